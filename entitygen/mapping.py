"""Mapping metadata and conversion helpers imported by generated entity modules.

Generated classes declare their persistence layout with :func:`entity` or
:func:`embeddable`. The decorators only attach an :class:`EntityInfo` to the
class; the runtime scanner reads it back with :func:`entity_info`.
"""

from __future__ import annotations

import dataclasses
import uuid
from typing import Any, Iterable, Optional, Union

ENTITY_INFO_ATTR = "__entity__"

ENTITY = "entity"
EMBEDDABLE = "embeddable"


@dataclasses.dataclass(frozen=True)
class Identity:
    name: str = "id"
    column: str = "id"


@dataclasses.dataclass(frozen=True)
class Column:
    name: str
    column: str
    storage_type: Optional[str] = None
    required: bool = False


@dataclasses.dataclass(frozen=True)
class Reference:
    name: str
    column: str
    target: str
    required: bool = False


@dataclasses.dataclass(frozen=True)
class Embedded:
    name: str
    prefix: str
    target: str
    required: bool = False


@dataclasses.dataclass(frozen=True)
class MappedCollection:
    name: str
    target: str
    id_column: str
    key_column: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class ScalarCollection:
    name: str
    column: str


FieldMapping = Union[Identity, Column, Reference, Embedded, MappedCollection, ScalarCollection]


@dataclasses.dataclass(frozen=True)
class EntityInfo:
    kind: str
    table: Optional[str]
    fields: tuple[FieldMapping, ...]
    source: Optional[str] = None

    def _of(self, kind: type) -> list:
        return [f for f in self.fields if isinstance(f, kind)]

    @property
    def identity(self) -> Optional[Identity]:
        found = self._of(Identity)
        return found[0] if found else None

    @property
    def columns(self) -> list[Column]:
        return self._of(Column)

    @property
    def references(self) -> list[Reference]:
        return self._of(Reference)

    @property
    def embedded(self) -> list[Embedded]:
        return self._of(Embedded)

    @property
    def collections(self) -> list[MappedCollection]:
        return self._of(MappedCollection)


def entity(table: str, fields: Iterable[FieldMapping] = (), source: Optional[str] = None):
    """Mark a class as a table-backed aggregate root."""

    def decorate(cls):
        setattr(cls, ENTITY_INFO_ATTR, EntityInfo(ENTITY, table, tuple(fields), source))
        return cls

    return decorate


def embeddable(fields: Iterable[FieldMapping] = (), source: Optional[str] = None):
    """Mark a class as a value object whose columns are inlined into its owner."""

    def decorate(cls):
        setattr(cls, ENTITY_INFO_ATTR, EntityInfo(EMBEDDABLE, None, tuple(fields), source))
        return cls

    return decorate


def entity_info(cls: Any) -> Optional[EntityInfo]:
    # Only metadata declared on the class itself, never inherited.
    info = vars(cls).get(ENTITY_INFO_ATTR) if isinstance(cls, type) else None
    return info if isinstance(info, EntityInfo) else None


class AggregateReference:
    """Reference to another aggregate by identifier only."""

    __slots__ = ("target", "id")

    def __init__(self, target: str, id: uuid.UUID):
        self.target = target
        self.id = id

    @classmethod
    def to(cls, target: str, id: Union[str, uuid.UUID]) -> "AggregateReference":
        return cls(target, as_uuid(id))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AggregateReference):
            return NotImplemented
        return self.target == other.target and self.id == other.id

    def __hash__(self) -> int:
        return hash((self.target, self.id))

    def __repr__(self) -> str:
        return f"AggregateReference({self.target!r}, {str(self.id)!r})"


def as_uuid(value: Union[str, uuid.UUID, None]) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def wire_id(value: Optional[uuid.UUID], as_text: bool = True) -> Union[str, uuid.UUID, None]:
    if value is None:
        return None
    return str(value) if as_text else value


def wire_stub(wire_cls: type, identifier: Any) -> Any:
    """Build a wire object that carries nothing but its identifier."""
    construct = getattr(wire_cls, "model_construct", None)
    if construct is not None:
        return construct(id=identifier)
    stub = wire_cls.__new__(wire_cls)
    if dataclasses.is_dataclass(wire_cls):
        for f in dataclasses.fields(wire_cls):
            object.__setattr__(stub, f.name, None)
    object.__setattr__(stub, "id", identifier)
    return stub
