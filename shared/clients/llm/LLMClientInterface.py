from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.clients.llm.models.ChatCompletion import ChatCompletion, ChatMessage
from shared.helper.HelperConfig import HelperConfig


class LLMClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # chat / completion config
        self.chat_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_CHAT_MODEL", default=self._get_default_chat_model())

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "llm"

    @abstractmethod
    def _get_default_chat_model(self) -> str:
        """Returns the chat model used when LLM_CHAT_MODEL is not set."""
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_chat(self) -> str:
        """Returns the endpoint path for chat/completion requests (e.g. "/api/chat")."""
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_chat_payload(self, messages: list[ChatMessage], temperature: float, max_tokens: int) -> dict:
        """Build the backend-specific request body for a chat/completion request.

        Args:
            messages (list[ChatMessage]): Role-tagged messages, system prompt first.
            temperature (float): Sampling temperature.
            max_tokens (int): Upper bound on generated tokens.

        Returns:
            dict: JSON-serialisable request body.
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_chat_response(self, response_data: dict) -> ChatCompletion:
        """Extract the assistant reply and token usage from a raw chat API response.

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            ChatCompletion: The assistant reply text and token counters.

        Raises:
            ValueError: If the response does not contain a valid reply.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_chat(self, messages: list[ChatMessage], temperature: float = 0.3, max_tokens: int = 1024) -> ChatCompletion:
        """Send a chat/completion request and return the assistant reply.

        Args:
            messages (list[ChatMessage]): Role-tagged messages
                (e.g. [ChatMessage(role="user", content="...")]).
            temperature (float): Sampling temperature.
            max_tokens (int): Upper bound on generated tokens.

        Returns:
            ChatCompletion: The assistant reply text and token counters.

        Raises:
            BackendRequestError: If the backend answers with a non-2xx status.
            ValueError: If the response does not contain a valid reply.
        """
        body = self.get_chat_payload(messages, temperature=temperature, max_tokens=max_tokens)
        response = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_chat(),
            json=body,
            raise_on_error=True,
        )
        completion = self.extract_chat_response(response.json())
        self.logging.debug(
            "Chat completion via %s: %d prompt / %d completion tokens.",
            self.get_engine_name(), completion.usage.prompt_tokens, completion.usage.completion_tokens,
        )
        return completion
