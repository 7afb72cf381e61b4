import dataclasses
import json
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel


def _default_serializer(obj: Any) -> Any:
    """
    Handle objects that aren't directly JSON serializable.

    NOTE: returns a *Python* object that json.dumps then serializes, never a
    JSON string, to avoid double-encoding.
    """
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")

    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)

    if isinstance(obj, Enum):
        return obj.value

    if isinstance(obj, datetime | date):
        return obj.isoformat()

    if isinstance(obj, set | frozenset):
        return sorted(obj, key=repr)

    if isinstance(obj, bytes | bytearray):
        try:
            return obj.decode("utf-8")
        except UnicodeDecodeError:
            return repr(obj)

    if isinstance(obj, Exception):
        return {"error": str(obj), "error_type": type(obj).__name__}

    # string repr so serialization never fails outright
    return repr(obj)


def serialize_to_json(data: Any, indent: int | None = None) -> str:
    """
    Serialize data to a JSON string with sorted keys.

    Pydantic models, dataclasses, enums, datetimes, sets and exceptions are
    converted; anything else falls back to ``repr``.
    """
    return json.dumps(
        data,
        sort_keys=True,
        ensure_ascii=False,
        indent=indent,
        default=_default_serializer,
    )
