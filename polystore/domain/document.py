"""
JSON document value type.

A Document wraps a JSON object (a ``dict`` with JSON-compatible values). It
is the payload carried unchanged by entries through insert, update and
conversion; the storage layer only ever serializes it.
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

from .exceptions import KeyNotFoundException

_MISSING = object()


class Document:
    """
    Mutable JSON object with typed-ish accessors and byte/file round-trips.

    Attributes:
        data: Underlying JSON object
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None, **fields: Any):
        self.data: Dict[str, Any] = dict(data or {})
        self.data.update(fields)

    def get(self, key: str, default: Any = _MISSING) -> Any:
        """
        Return the value stored under ``key``.

        Args:
            key: Top-level key
            default: Returned when the key is missing; if omitted a
                KeyNotFoundException is raised instead

        Returns:
            Stored value; nested objects come back as Document
        """
        if key not in self.data:
            if default is _MISSING:
                raise KeyNotFoundException(key)
            return default
        value = self.data[key]
        if isinstance(value, dict):
            return Document(value)
        return value

    def set(self, key: str, value: Any) -> None:
        if isinstance(value, Document):
            value = value.to_dict()
        self.data[key] = value

    def append(self, key: str, value: Any) -> "Document":
        """Set ``key`` and return self for chaining."""
        self.set(key, value)
        return self

    def remove(self, key: str) -> "Document":
        self.data.pop(key, None)
        return self

    def contains(self, key: str) -> bool:
        return key in self.data

    def keys(self) -> list[str]:
        return list(self.data.keys())

    def copy(self) -> "Document":
        return Document(copy.deepcopy(self.data))

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self.data)

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.data, indent=indent, ensure_ascii=False)

    def to_bytes(self) -> bytes:
        return self.to_json().encode("utf-8")

    @classmethod
    def from_json(cls, raw: str) -> "Document":
        """
        Parse a JSON object.

        Raises:
            ValueError: If the text is not valid JSON or not a JSON object
        """
        parsed = json.loads(raw)
        if not isinstance(parsed, dict):
            raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
        return cls(parsed)

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Document":
        return cls.from_json(raw.decode("utf-8"))

    def write(self, path: Union[str, os.PathLike]) -> None:
        """
        Write the document to ``path`` as indented JSON.

        The file is replaced atomically so readers never observe a partial write.
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        tmp.write_text(self.to_json(indent=2), encoding="utf-8")
        os.replace(tmp, target)

    @classmethod
    def load(cls, path: Union[str, os.PathLike]) -> "Document":
        return cls.from_json(Path(path).read_text(encoding="utf-8"))

    def __contains__(self, key: object) -> bool:
        return key in self.data

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def __len__(self) -> int:
        return len(self.data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Document):
            return self.data == other.data
        if isinstance(other, dict):
            return self.data == other
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Document({self.data!r})"
