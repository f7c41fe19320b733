"""Static type tables used to classify wire-model fields."""

from __future__ import annotations

# Container annotations recognised as collections. Ordered containers keep a
# position column in their join table.
ORDERED_CONTAINERS = frozenset({"List", "list", "Sequence", "MutableSequence"})
UNORDERED_CONTAINERS = frozenset(
    {"Set", "set", "FrozenSet", "frozenset", "AbstractSet", "MutableSet", "Collection"}
)
COLLECTION_CONTAINERS = ORDERED_CONTAINERS | UNORDERED_CONTAINERS

# Python factory used to rebuild a container of the declared shape.
CONTAINER_FACTORIES: dict[str, str] = {
    "List": "list",
    "list": "list",
    "Sequence": "list",
    "MutableSequence": "list",
    "Collection": "list",
    "Set": "set",
    "set": "set",
    "MutableSet": "set",
    "AbstractSet": "frozenset",
    "FrozenSet": "frozenset",
    "frozenset": "frozenset",
}

OPTIONAL_WRAPPERS = frozenset({"Optional"})
UNION_WRAPPERS = frozenset({"Union"})
ANNOTATED_WRAPPERS = frozenset({"Annotated"})

ENUM_BASES = frozenset({"Enum", "IntEnum", "StrEnum", "Flag", "IntFlag"})

IDENTITY_FIELD = "id"
IDENTITY_TYPES = frozenset({"str", "UUID", "StrictStr"})

ENUM_STORAGE_TYPE = "varchar(50)"

# Annotation name -> Liquibase column type. The name is the last dotted
# component of the annotation (``datetime.date`` and ``date`` both map).
SCALAR_STORAGE_TYPES: dict[str, str] = {
    "str": "varchar(255)",
    "StrictStr": "varchar(255)",
    "EmailStr": "varchar(255)",
    "AnyUrl": "varchar(255)",
    "HttpUrl": "varchar(255)",
    "int": "integer",
    "StrictInt": "integer",
    "PositiveInt": "integer",
    "NegativeInt": "integer",
    "NonNegativeInt": "integer",
    "NonPositiveInt": "integer",
    "float": "double precision",
    "StrictFloat": "double precision",
    "PositiveFloat": "double precision",
    "NegativeFloat": "double precision",
    "Decimal": "decimal(19,2)",
    "bool": "boolean",
    "StrictBool": "boolean",
    "date": "date",
    "time": "time",
    "NaiveDatetime": "timestamp",
    "datetime": "timestamp with time zone",
    "AwareDatetime": "timestamp with time zone",
    "UUID": "uuid",
    "UUID4": "uuid",
    "bytes": "bytea",
    "StrictBytes": "bytea",
    "bytearray": "bytea",
    "Any": "text",
    "object": "text",
}


def storage_type_for(type_name: str, *, is_enum: bool = False) -> str | None:
    """Map a scalar annotation name to its storage type, or None if unmapped."""
    if is_enum:
        return ENUM_STORAGE_TYPE
    return SCALAR_STORAGE_TYPES.get(type_name.rsplit(".", 1)[-1])


def is_collection(container: str | None) -> bool:
    return container is not None and container.rsplit(".", 1)[-1] in COLLECTION_CONTAINERS


def is_ordered(container: str | None) -> bool:
    return container is not None and container.rsplit(".", 1)[-1] in ORDERED_CONTAINERS


def container_factory(container: str) -> str:
    return CONTAINER_FACTORIES.get(container.rsplit(".", 1)[-1], "list")
