from abc import abstractmethod
import asyncio

from typing import Tuple
from shared.clients.ClientInterface import ClientInterface

from shared.helper.HelperConfig import HelperConfig

# text used to discover the vector dimension of the configured model
_DIMENSION_PROBE_TEXT = "dimension probe"


class EmbedClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # model and embedding config
        self.embed_distance = helper_config.get_string_val(f"{self.get_client_type().upper()}_DISTANCE", default="Cosine")
        self.embed_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_MODEL", default=self._get_default_model())
        configured_batch = helper_config.get_int_val(f"{self.get_client_type().upper()}_BATCH_SIZE", default=self._get_native_batch_limit())
        self.max_batch_size = max(1, min(configured_batch, self._get_native_batch_limit()))
        self.concurrency = helper_config.get_int_val(f"{self.get_client_type().upper()}_CONCURRENCY", default=4, minimum=1)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "embed"
        """
        return "embed"

    @abstractmethod
    def _get_default_model(self) -> str:
        """
        Returns the embedding model used when EMBED_MODEL is not set.
        """
        pass

    @abstractmethod
    def _get_native_batch_limit(self) -> int:
        """
        Returns the maximum number of texts the backend accepts in one embedding request.
        """
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """
        Returns the endpoint path for embedding requests.

        Returns:
            str: The endpoint path for embedding requests (e.g. "/api/embed")
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            texts (list[str]): The texts to embed.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a raw embedding API response.

        Response format differs by backend:
        - Ollama /api/embed: {"embeddings": [[...], [...]]}, already ordered
        - OpenAI-compatible: {"data": [{"embedding": [...], "index": 0}]}, needs sorting
        - Gemini batchEmbedContents: {"embeddings": [{"values": [...]}]}

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the input texts.

        Raises:
            ValueError: If the response format is invalid or embeddings are empty.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_fetch_embedding_vector_size(self) -> Tuple[int, str]:
        """
        Probe the output vector dimension of the configured embedding model.

        The dimension is measured on a real embedding rather than read from model
        metadata so that it always matches what upserts will send.

        Returns:
            Tuple[int, str]: The number of dimensions produced by the embedding model and the distance metric.
        """
        vector = await self.do_embed_text(_DIMENSION_PROBE_TEXT)
        self.logging.info(
            "Embedding model '%s' (%s) produces %d-dimensional vectors.",
            self.embed_model, self.get_engine_name(), len(vector),
        )
        return len(vector), self.embed_distance

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        """Send a single embedding request and return the extracted vectors.

        Args:
            texts (list[str] | str): One or more texts to embed, at most max_batch_size.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the inputs.

        Raises:
            BackendRequestError: If the backend answers with a non-2xx status.
            ValueError: If the response does not contain one valid embedding per input.
        """
        texts = [texts] if isinstance(texts, str) else texts
        body = self.get_embed_payload(texts)
        response = await self.do_request(method="POST", endpoint=self.get_endpoint_embedding(), json=body, raise_on_error=True)
        vectors = self.extract_embeddings_from_response(response.json())
        if len(vectors) != len(texts):
            raise ValueError(
                "Embedding backend returned %d vectors for %d inputs." % (len(vectors), len(texts))
            )
        return vectors

    async def do_embed_text(self, text: str) -> list[float]:
        """Embed one text.

        Args:
            text (str): The text to embed.

        Returns:
            list[float]: The embedding vector.
        """
        vectors = await self.do_embed([text])
        return vectors[0]

    async def do_embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed any number of texts, chunked to the backend's batch limit.

        Chunks are sent concurrently, bounded by EMBED_CONCURRENCY to respect
        provider rate limits. A failing chunk fails the whole batch.

        Args:
            texts (list[str]): The texts to embed.

        Returns:
            list[list[float]]: Embedding vectors in input order.
        """
        if not texts:
            return []
        chunks = [texts[i:i + self.max_batch_size] for i in range(0, len(texts), self.max_batch_size)]
        sem = asyncio.Semaphore(self.concurrency)

        async def _embed_chunk(chunk: list[str]) -> list[list[float]]:
            async with sem:
                return await self.do_embed(chunk)

        results = await asyncio.gather(*[_embed_chunk(chunk) for chunk in chunks])
        vectors = [vector for chunk_vectors in results for vector in chunk_vectors]
        self.logging.debug("Generated %d embeddings in %d request(s).", len(vectors), len(chunks))
        return vectors
