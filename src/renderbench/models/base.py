# Copyright (c) Syntropy Systems
"""Pydantic bases for the JSONL wire format.

Records keep the key spellings existing result files already use (some
camelCase, some snake_case), so every model is dumped by alias. Optional
blocks that a record does not carry are left out rather than written as null.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import (
    BaseModel,
    ConfigDict,
    JsonValue,
    SerializerFunctionWrapHandler,
    model_serializer,
)
from typing_extensions import TypeAlias

JSONValue: TypeAlias = JsonValue
JSONObject: TypeAlias = dict[str, JSONValue]


class WireModel(BaseModel):
    """A record or record block as it appears in a JSONL line.

    Fields named in ``OMIT_IF_NONE`` disappear from the dump when unset.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
    )

    OMIT_IF_NONE: ClassVar[frozenset[str]] = frozenset()

    @model_serializer(mode="wrap")
    def _drop_absent_optionals(
        self, handler: SerializerFunctionWrapHandler
    ) -> dict[str, Any]:
        data: dict[str, Any] = handler(self)
        for key in self.OMIT_IF_NONE:
            if key in data and data[key] is None:
                del data[key]
        return data

    def to_wire(self) -> JSONObject:
        """Return a JSON-ready dict with wire field names."""
        return self.model_dump(mode="json", by_alias=True)


class OpenBlob(WireModel):
    """Loader-reported block; keys beyond the declared ones pass through."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="allow",
        populate_by_name=True,
    )
