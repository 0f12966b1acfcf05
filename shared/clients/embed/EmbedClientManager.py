from shared.helper.HelperConfig import HelperConfig
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.embed.gemini.EmbedClientGemini import EmbedClientGemini
from shared.clients.embed.ollama.EmbedClientOllama import EmbedClientOllama
from shared.clients.embed.openai.EmbedClientOpenai import EmbedClientOpenai

# every supported embedding backend, keyed by the lowercase EMBED_ENGINE value
EMBED_CLIENTS: dict[str, type[EmbedClientInterface]] = {
    "ollama": EmbedClientOllama,
    "openai": EmbedClientOpenai,
    "gemini": EmbedClientGemini,
}


class EmbedClientManager:
    """
    Selects the Embed client once, at process start, from configuration.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Reads the Embed engine from ENV configuration.

        Returns:
            str: The lowercase name of the Embed engine.

        Raises:
            ValueError: If no Embed engine is specified in the configuration.
        """
        engine = self.helper_config.get_string_val("EMBED_ENGINE")
        if not engine:
            raise ValueError("No Embed engine specified in configuration.")
        return engine.strip().lower()

    def _initialize_client(self) -> EmbedClientInterface:
        """
        Instantiates the Embed client registered for the configured engine.

        Returns:
            EmbedClientInterface: The Embed client.

        Raises:
            ValueError: If the configured engine is not supported.
        """
        engine = self._get_engine_from_env()
        client_class = EMBED_CLIENTS.get(engine)
        if client_class is None:
            raise ValueError(f"Unsupported Embed engine specified: '{engine}'. Supported: {sorted(EMBED_CLIENTS)}")
        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated Embed client for engine: %s", engine)
        return client

    def get_client(self) -> EmbedClientInterface:
        """
        Returns the instantiated Embed client.

        Returns:
            EmbedClientInterface: The Embed client instance.
        """
        return self.client
