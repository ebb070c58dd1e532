"""Base model for data exchanged with runners and API clients."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Immutable model serialized as camelCase JSON.

    Fields can be populated by their Python names as well as by alias.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )
