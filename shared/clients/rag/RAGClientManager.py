from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.qdrant.RAGClientQdrant import RAGClientQdrant

RAG_CLIENTS: dict[str, type[RAGClientInterface]] = {
    "qdrant": RAGClientQdrant,
}


class RAGClientManager:
    """
    Manager class to instantiate the configured vector store client.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Reads the RAG engine from ENV configuration. Defaults to qdrant.

        Returns:
            str: The lowercase engine name.
        """
        return self.helper_config.get_string_val("RAG_ENGINE", default="qdrant").strip().lower()

    def _initialize_client(self) -> RAGClientInterface:
        """
        Initializes the RAG client for the configured engine.

        Raises:
            ValueError: If the engine is not supported.
        """
        engine = self._get_engine_from_env()
        client_class = RAG_CLIENTS.get(engine)
        if client_class is None:
            raise ValueError(f"Unsupported RAG engine specified: '{engine}'. Supported: {sorted(RAG_CLIENTS)}")
        client = client_class(helper_config=self.helper_config)
        self.logging.debug(f"Instantiated RAG client for engine: {engine}")
        return client

    def get_client(self) -> RAGClientInterface:
        """
        Returns the instantiated RAG client.
        """
        return self.client
