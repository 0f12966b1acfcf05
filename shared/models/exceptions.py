"""Exception types shared by the indexing pipeline and the retrieval service."""


class DimensionMismatchError(ValueError):
    """Raised when a vector's length differs from the collection's configured dimension."""

    def __init__(self, expected: int, actual: int, collection: str, point_id: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        self.collection = collection
        self.point_id = point_id
        target = f" for point '{point_id}'" if point_id else ""
        super().__init__(
            f"Vector dimension mismatch in collection '{collection}'{target}: "
            f"expected {expected}, got {actual}. Check that EMBED_ENGINE/EMBED_MODEL "
            f"match the provider the collection was created with."
        )


class UnrecoverableJobError(Exception):
    """Raised for jobs that can never succeed (malformed payload, unknown job name).

    The queue fails such jobs immediately instead of scheduling a retry.
    """


class EntryNotFoundError(LookupError):
    """Raised when an IndexTracker entry is required but does not exist."""


class RetrievalError(Exception):
    """Terminal failure of a retrieval query.

    Attributes:
        state: Name of the query state in which the failure happened.
    """

    def __init__(self, state: str, message: str) -> None:
        self.state = state
        super().__init__(f"Query failed during {state}: {message}")


class BackendRequestError(Exception):
    """Non-2xx answer from an HTTP backend.

    Attributes:
        retryable: True for rate limiting and server side errors.
    """

    def __init__(self, url: str, status_code: int, body: str = "") -> None:
        self.url = url
        self.status_code = status_code
        self.body = body
        self.retryable = status_code == 429 or status_code >= 500
        super().__init__(f"Request to {url} failed with status {status_code}")
