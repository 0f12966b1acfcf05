"""Deterministic mapping from domain entity ids to vector store ids."""

import uuid

# fixed namespace, changing it orphans every stored vector
VECTOR_ID_NAMESPACE = uuid.UUID("6ba7b810-9dad-11d1-80b4-00c04fd430c8")


def make_vector_id(entity_id: str) -> str:
    """Return the UUIDv5 of entity_id in the vector id namespace.

    The same entity id yields the same vector id across processes and restarts,
    which turns re-indexing into an overwrite and lets deletes work by entity id.
    """
    return str(uuid.uuid5(VECTOR_ID_NAMESPACE, str(entity_id)))
