"""
Document Model Base.

Every entity stored in the application document shares one configuration:
Python attributes are snake_case while the persisted JSON keeps the
camelCase keys the rest of the platform reads and writes.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class DocumentModel(BaseModel):
    """Base for persisted entities.

    Serialise with ``model_dump(by_alias=True)`` when writing to the store;
    construction accepts either the snake_case name or the camelCase alias.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )
