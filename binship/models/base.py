"""Base model for persisted state.

Persisted JSON uses camelCase keys while Python code uses snake_case
attributes. Dump with ``by_alias=True``; both spellings are accepted on input.
"""

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic.alias_generators import to_camel


class CamelCaseModel(BaseModel):
    """Pydantic model serialized with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )
