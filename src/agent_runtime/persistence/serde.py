"""Versioned blob serialization for checkpoint state and metadata.

A serializer turns a value into a ``(type_tag, bytes)`` pair and back. The
store persists the tag next to every blob, so a database written with one
encoding stays readable after the default changes, and a blob with a tag this
build does not know fails loudly instead of decoding to garbage. The contract
is the same one LangGraph serializers implement, so ``JsonPlusSerializer`` can
be handed to the store directly.
"""

import json
from datetime import date, datetime
from enum import Enum
from pathlib import PurePath
from typing import Any, Protocol
from uuid import UUID

from pydantic import BaseModel

from agent_runtime.exceptions import SerializationError

JSON_TYPE = "json"
BYTES_TYPE = "bytes"


class Serializer(Protocol):
    """Encodes opaque values into tagged blobs."""

    def dumps_typed(self, obj: Any) -> tuple[str, bytes]: ...

    def loads_typed(self, data: tuple[str, bytes]) -> Any: ...


def _json_default(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (UUID, PurePath)):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class JsonSerializer:
    """Default serializer: raw bytes pass through, everything else is JSON."""

    def dumps_typed(self, obj: Any) -> tuple[str, bytes]:
        if isinstance(obj, (bytes, bytearray)):
            return BYTES_TYPE, bytes(obj)
        try:
            return JSON_TYPE, json.dumps(obj, default=_json_default).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Cannot encode {type(obj).__name__}: {e}") from e

    def loads_typed(self, data: tuple[str, bytes]) -> Any:
        type_tag, blob = data
        if type_tag == BYTES_TYPE:
            return bytes(blob)
        if type_tag == JSON_TYPE:
            try:
                return json.loads(blob)
            except ValueError as e:
                raise SerializationError(f"Corrupt json blob: {e}") from e
        raise SerializationError(f"Unsupported serialization type '{type_tag}'")
