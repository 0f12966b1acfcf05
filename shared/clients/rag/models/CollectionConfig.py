from pydantic import BaseModel, ConfigDict, Field


class CollectionConfig(BaseModel):
    """Immutable description of the vector collection in use.

    Resolved once at startup from the probed embedding dimension and passed
    to every vector store operation.

    Attributes:
        name:      Collection name, suffixed with the dimension (e.g. "knowledge_768").
        dimension: Length every stored vector must have.
        distance:  Distance metric the collection was created with.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    dimension: int = Field(gt=0)
    distance: str = "Cosine"
