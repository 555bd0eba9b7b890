"""
Mapping between dataclass records and stored documents.

Records use snake_case attributes; documents use the camelCase keys the
indexes are declared on (``guild_id`` <-> ``guildId``). Fields can override
their stored key with ``field(metadata={"key": "totalXP"})``.
"""

from __future__ import annotations

import dataclasses
import typing
from datetime import date, datetime, timezone
from enum import Enum
from functools import lru_cache
from types import NoneType, UnionType
from typing import Any, Dict, Mapping, Type, TypeVar

T = TypeVar("T", bound="DocumentMixin")


def to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def parse_datetime(value: Any) -> datetime | None:
    """Accept datetimes, ISO strings (``Z`` suffix included) or epoch seconds; always return aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise TypeError(f"Cannot parse datetime from {type(value).__name__}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _unwrap_optional(hint: Any) -> Any:
    origin = typing.get_origin(hint)
    if origin in (typing.Union, UnionType):
        args = [arg for arg in typing.get_args(hint) if arg is not NoneType]
        if len(args) == 1:
            return args[0]
    return hint


@lru_cache(maxsize=None)
def _field_table(cls: type) -> tuple[tuple[str, str, Any], ...]:
    hints = typing.get_type_hints(cls)
    table = []
    for f in dataclasses.fields(cls):
        key = f.metadata.get("key") or to_camel(f.name)
        table.append((f.name, key, _unwrap_optional(hints.get(f.name, Any))))
    return tuple(table)


def _decode(value: Any, hint: Any) -> Any:
    if value is None:
        return None
    if hint is datetime:
        return parse_datetime(value)
    if hint is date and isinstance(value, str):
        return date.fromisoformat(value)
    if isinstance(hint, type) and issubclass(hint, Enum) and not isinstance(value, hint):
        return hint(value)
    return value


def _encode(value: Any, for_json: bool) -> Any:
    if isinstance(value, Enum):
        return value.value
    if for_json and isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, list):
        return [_encode(item, for_json) for item in value]
    if isinstance(value, dict):
        return {key: _encode(item, for_json) for key, item in value.items()}
    return value


class DocumentMixin:
    """Adds document conversion to a dataclass."""

    @classmethod
    def from_document(cls: Type[T], document: Mapping[str, Any]) -> T:
        """Build a record from a stored document. Unknown keys such as ``_id`` are ignored."""
        kwargs: Dict[str, Any] = {}
        for name, key, hint in _field_table(cls):
            if key in document:
                kwargs[name] = _decode(document[key], hint)
            elif name in document:
                kwargs[name] = _decode(document[name], hint)
        return cls(**kwargs)

    @classmethod
    def document_fields(cls, changes: Mapping[str, Any], for_json: bool = False) -> Dict[str, Any]:
        """
        Translate a partial update keyed by attribute name into document keys.

        Raises:
            ValueError: If a key is not a field of the record.
        """
        names = {name: key for name, key, _ in _field_table(cls)}
        keys = set(names.values())
        translated: Dict[str, Any] = {}
        for name, value in changes.items():
            if name in names:
                translated[names[name]] = _encode(value, for_json)
            elif name in keys:
                translated[name] = _encode(value, for_json)
            else:
                raise ValueError(f"{cls.__name__} has no field {name!r}")
        return translated

    def _dump(self, for_json: bool) -> Dict[str, Any]:
        return {key: _encode(getattr(self, name), for_json) for name, key, _ in _field_table(type(self))}

    def to_document(self) -> Dict[str, Any]:
        """Document for MongoDB; datetimes stay native BSON dates."""
        return self._dump(for_json=False)

    def to_json_dict(self) -> Dict[str, Any]:
        """Document for the JSON fallback store; datetimes become ISO strings."""
        return self._dump(for_json=True)
