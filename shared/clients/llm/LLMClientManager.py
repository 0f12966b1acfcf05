from shared.helper.HelperConfig import HelperConfig
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.llm.gemini.LLMClientGemini import LLMClientGemini
from shared.clients.llm.ollama.LLMClientOllama import LLMClientOllama
from shared.clients.llm.openai.LLMClientOpenai import LLMClientOpenai

LLM_CLIENTS: dict[str, type[LLMClientInterface]] = {
    "ollama": LLMClientOllama,
    "openai": LLMClientOpenai,
    "gemini": LLMClientGemini,
}


class LLMClientManager:
    """Manager class to instantiate the configured LLM client."""

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """Read the LLM engine name from env configuration.

        Returns:
            str: Lowercase engine name (e.g. "ollama").

        Raises:
            ValueError: If LLM_ENGINE is not set or empty.
        """
        engine = self.helper_config.get_string_val("LLM_ENGINE")
        if not engine:
            raise ValueError("No LLM engine specified in configuration (LLM_ENGINE).")
        return engine.strip().lower()

    def _initialize_client(self) -> LLMClientInterface:
        """Instantiate the LLM client for the configured engine.

        Raises:
            ValueError: If the engine is unsupported.
        """
        engine = self._get_engine_from_env()
        client_class = LLM_CLIENTS.get(engine)
        if client_class is None:
            raise ValueError("Unsupported LLM engine '%s'. Supported: %s" % (engine, sorted(LLM_CLIENTS)))
        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated LLM client for engine: %s", engine)
        return client

    def get_client(self) -> LLMClientInterface:
        """Return the instantiated LLM client."""
        return self.client
