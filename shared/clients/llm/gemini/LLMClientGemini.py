from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.llm.models.ChatCompletion import ChatCompletion, ChatMessage, TokenUsage
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class LLMClientGemini(LLMClientInterface):
    """Chat client for the Gemini REST API (generateContent)."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="https://generativelanguage.googleapis.com", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Gemini"

    def _get_default_chat_model(self) -> str:
        return "gemini-1.5-flash"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="https://generativelanguage.googleapis.com"),
            EnvConfig(env_key="API_KEY", val_type="string", default=None),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {"x-goog-api-key": self._api_key}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/v1beta/models"

    def _get_endpoint_chat(self) -> str:
        return f"/v1beta/models/{self.chat_model}:generateContent"

    ################ PAYLOAD BUILDER ##################
    def get_chat_payload(self, messages: list[ChatMessage], temperature: float, max_tokens: int) -> dict:
        """Build the Gemini generateContent body.

        System messages are merged into systemInstruction, assistant turns use the "model" role.
        """
        system_parts = [{"text": m.content} for m in messages if m.role == "system"]
        contents = [
            {"role": "model" if m.role == "assistant" else "user", "parts": [{"text": m.content}]}
            for m in messages
            if m.role != "system"
        ]
        payload: dict = {
            "contents": contents,
            "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
        }
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        return payload

    ##########################################
    ################# OTHER ##################
    ##########################################

    def extract_chat_response(self, response_data: dict) -> ChatCompletion:
        candidates = response_data.get("candidates") or []
        parts = candidates[0].get("content", {}).get("parts", []) if candidates else []
        if not parts:
            raise ValueError(
                "Gemini response does not contain a valid candidate. "
                "Response keys: %s" % list(response_data.keys())
            )
        content = "".join(part.get("text", "") for part in parts)
        usage_data = response_data.get("usageMetadata") or {}
        usage = TokenUsage(
            prompt_tokens=usage_data.get("promptTokenCount", 0),
            completion_tokens=usage_data.get("candidatesTokenCount", 0),
        )
        return ChatCompletion(content=content, usage=usage)
