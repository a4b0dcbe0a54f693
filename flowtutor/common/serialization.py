"""
Serialization Utilities

Ledger records are stored as JSON documents. ``serialize`` lowers records
to JSON-safe data (datetimes and dates as ISO-8601 strings, enums as their
values, sets as sorted lists) and the ``parse_*`` helpers read them back.
"""

import json
import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar, Union
from dataclasses import is_dataclass, asdict

T = TypeVar('T')


def serialize(obj: Any, exclude_none: bool = False) -> Any:
    """
    Convert ``obj`` into JSON-safe Python data.

    Args:
        obj: Value, record, dataclass or container to convert
        exclude_none: Drop dictionary entries whose value is None

    Returns:
        Nested dicts, lists and scalars
    """
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    # datetime is a date subclass; both render as ISO-8601
    if isinstance(obj, datetime.date):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, dict):
        return {
            key: serialize(value, exclude_none)
            for key, value in obj.items()
            if not (exclude_none and value is None)
        }
    if isinstance(obj, (set, frozenset)):
        # Sorted so documents compare stably
        return [serialize(item, exclude_none) for item in sorted(obj)]
    if isinstance(obj, (list, tuple)):
        return [serialize(item, exclude_none) for item in obj]
    if isinstance(obj, SerializableMixin):
        return serialize(obj.to_dict(), exclude_none)
    if is_dataclass(obj):
        return serialize(asdict(obj), exclude_none)
    return str(obj)


def parse_datetime(value: Union[str, datetime.datetime, None]) -> Optional[datetime.datetime]:
    """Parse an ISO-8601 string into a datetime, passing datetimes and None through."""
    if value is None or isinstance(value, datetime.datetime):
        return value
    return datetime.datetime.fromisoformat(value)


def parse_date(value: Union[str, datetime.date, None]) -> Optional[datetime.date]:
    """Parse an ISO-8601 string into a date, passing dates and None through."""
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(value)


def to_json(obj: Any, pretty: bool = False, exclude_none: bool = False) -> str:
    """Serialize ``obj`` to a JSON string, indented when ``pretty`` is set."""
    return json.dumps(serialize(obj, exclude_none), indent=2 if pretty else None, ensure_ascii=False)


class SerializableMixin:
    """
    Dict round-tripping for ledger records.

    Subclasses list the attributes to persist in ``__serializable_fields__``
    and those that may be absent from stored documents in
    ``__optional_fields__``. Nested values arrive as plain JSON data;
    subclasses convert them back in ``__post_init__``.
    """

    __serializable_fields__: List[str] = []
    __optional_fields__: List[str] = []

    def to_dict(self) -> Dict[str, Any]:
        return {
            name: serialize(getattr(self, name))
            for name in self.__serializable_fields__
            if hasattr(self, name)
        }

    @classmethod
    def from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
        missing = [
            name for name in cls.__serializable_fields__
            if name not in data and name not in cls.__optional_fields__
        ]
        if missing:
            raise ValueError(f"{cls.__name__} document is missing {', '.join(missing)}")
        return cls(**{name: data[name] for name in cls.__serializable_fields__ if name in data})
