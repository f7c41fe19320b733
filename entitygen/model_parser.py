"""Parse wire-model sources and classify their fields.

Model sources are read with :mod:`ast`; nothing is imported, so classification
depends only on the static shape of each annotation.
"""

from __future__ import annotations

import ast
import dataclasses
import logging
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from entitygen import type_tables

logger = logging.getLogger(__name__)


class ParseError(Exception):
    """Raised when a model source cannot be turned into type descriptors."""


class FieldRole(Enum):
    SCALAR = "scalar"
    REFERENCE = "reference"
    EMBEDDED = "embedded"
    COLLECTION_OF_REFERENCE = "collection_of_reference"
    COLLECTION_OF_SCALAR = "collection_of_scalar"


@dataclasses.dataclass
class FieldDescriptor:
    name: str
    type_name: str  # unwrapped type, e.g. "Customer", "datetime.date", "List"
    annotation: str  # source text of the unwrapped annotation
    container: Optional[str] = None
    element_type: Optional[str] = None
    optional: bool = False
    has_default: bool = False
    names: frozenset[str] = frozenset()  # root names referenced by the annotation

    @property
    def required(self) -> bool:
        return not self.optional and not self.has_default


@dataclasses.dataclass
class SourceTypeDescriptor:
    name: str
    module: str
    fields: list[FieldDescriptor]
    bases: list[str] = dataclasses.field(default_factory=list)
    is_enum: bool = False
    imports: dict[str, str] = dataclasses.field(default_factory=dict)
    source_path: Optional[str] = None
    outer: Optional[str] = None  # enclosing class for nested enums

    @property
    def qualified_name(self) -> str:
        return f"{self.module}.{self.name}"

    def field(self, name: str) -> Optional[FieldDescriptor]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def identity_field(self) -> Optional[FieldDescriptor]:
        f = self.field(type_tables.IDENTITY_FIELD)
        if f is None or f.container is not None:
            return None
        if f.type_name.rsplit(".", 1)[-1] not in type_tables.IDENTITY_TYPES:
            return None
        return f

    def has_identity(self) -> bool:
        return self.identity_field() is not None


@dataclasses.dataclass
class ClassifiedField:
    field: FieldDescriptor
    role: FieldRole
    storage_type: Optional[str] = None
    target: Optional[str] = None  # model type name for non-scalar roles


# ------------------------------------------------------------------------------
# Annotation handling
# ------------------------------------------------------------------------------


def dotted_name(node: ast.expr) -> Optional[str]:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        parent = dotted_name(node.value)
        return f"{parent}.{node.attr}" if parent else None
    return None


def _short(name: Optional[str]) -> str:
    return (name or "").rsplit(".", 1)[-1]


def _is_none(node: ast.expr) -> bool:
    return isinstance(node, ast.Constant) and node.value is None or (
        isinstance(node, ast.Name) and node.id == "None"
    )


def _subscript_args(node: ast.Subscript) -> list[ast.expr]:
    if isinstance(node.slice, ast.Tuple):
        return list(node.slice.elts)
    return [node.slice]


def unwrap_annotation(node: ast.expr) -> tuple[ast.expr, bool]:
    """Strip Optional/Union-with-None/Annotated wrappers; return (inner, optional)."""
    optional = False
    while True:
        if isinstance(node, ast.Constant) and isinstance(node.value, str):
            try:
                node = ast.parse(node.value, mode="eval").body
            except SyntaxError as exc:
                raise ParseError(f"invalid forward reference {node.value!r}") from exc
            continue
        if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
            members = _flatten_union(node)
            rest = [m for m in members if not _is_none(m)]
            if len(rest) != len(members):
                optional = True
            if len(rest) == 1:
                node = rest[0]
                continue
            return node, optional
        if isinstance(node, ast.Subscript):
            base = _short(dotted_name(node.value))
            args = _subscript_args(node)
            if base in type_tables.OPTIONAL_WRAPPERS:
                optional = True
                node = args[0]
                continue
            if base in type_tables.ANNOTATED_WRAPPERS:
                node = args[0]
                continue
            if base in type_tables.UNION_WRAPPERS:
                rest = [a for a in args if not _is_none(a)]
                if len(rest) != len(args):
                    optional = True
                if len(rest) == 1:
                    node = rest[0]
                    continue
        return node, optional


def _flatten_union(node: ast.expr) -> list[ast.expr]:
    if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
        return _flatten_union(node.left) + _flatten_union(node.right)
    return [node]


def _root_names(node: ast.expr) -> frozenset[str]:
    names = set()
    for child in ast.walk(node):
        if isinstance(child, ast.Name):
            names.add(child.id)
    return frozenset(names)


def describe_annotation(name: str, annotation: ast.expr, has_default: bool) -> FieldDescriptor:
    inner, optional = unwrap_annotation(annotation)
    container = None
    element_type = None
    if isinstance(inner, ast.Subscript):
        type_name = dotted_name(inner.value) or ast.unparse(inner.value)
        if type_tables.is_collection(type_name):
            container = type_name
            element, _ = unwrap_annotation(_subscript_args(inner)[0])
            element_type = dotted_name(element) or ast.unparse(element)
    else:
        type_name = dotted_name(inner) or ast.unparse(inner)
    return FieldDescriptor(
        name=name,
        type_name=type_name,
        annotation=ast.unparse(inner),
        container=container,
        element_type=element_type,
        optional=optional,
        has_default=has_default,
        names=_root_names(inner),
    )


def _has_default(value: Optional[ast.expr]) -> bool:
    """Whether an assigned value makes the field optional to construct."""
    if value is None:
        return False
    if isinstance(value, ast.Call) and _short(dotted_name(value.func)) in {"Field", "field"}:
        if any(kw.arg in {"default", "default_factory"} for kw in value.keywords):
            return True
        if value.args:
            first = value.args[0]
            return not (isinstance(first, ast.Constant) and first.value is Ellipsis)
        return False
    return True


# ------------------------------------------------------------------------------
# Source parsing
# ------------------------------------------------------------------------------


def collect_imports(tree: ast.Module, module: str) -> dict[str, str]:
    """Map each imported local name to the import statement that provides it."""
    package = module.rsplit(".", 1)[0] if "." in module else ""
    imports: dict[str, str] = {}
    for node in tree.body:
        if isinstance(node, ast.Import):
            for alias in node.names:
                local = alias.asname or alias.name.split(".")[0]
                suffix = f" as {alias.asname}" if alias.asname else ""
                imports[local] = f"import {alias.name}{suffix}"
        elif isinstance(node, ast.ImportFrom):
            source = node.module or ""
            if node.level:
                parts = package.split(".") if package else []
                if node.level > 1:
                    parts = parts[: len(parts) - (node.level - 1)]
                source = ".".join(p for p in parts + ([source] if source else []) if p)
            if source == "__future__":
                continue
            for alias in node.names:
                local = alias.asname or alias.name
                suffix = f" as {alias.asname}" if alias.asname else ""
                imports[local] = f"from {source} import {alias.name}{suffix}"
    return imports


def _base_names(node: ast.ClassDef) -> list[str]:
    return [_short(dotted_name(b)) for b in node.bases if dotted_name(b)]


def _parse_class(node: ast.ClassDef, module: str, imports: dict[str, str], path: Path) -> SourceTypeDescriptor:
    bases = _base_names(node)
    is_enum = bool(type_tables.ENUM_BASES & set(bases))
    fields: list[FieldDescriptor] = []
    if not is_enum:
        for item in node.body:
            if not isinstance(item, ast.AnnAssign) or not isinstance(item.target, ast.Name):
                continue
            name = item.target.id
            if name.startswith("_") or name == "model_config":
                continue
            if _short(dotted_name(item.annotation)) == "ClassVar" or (
                isinstance(item.annotation, ast.Subscript)
                and _short(dotted_name(item.annotation.value)) == "ClassVar"
            ):
                continue
            fields.append(describe_annotation(name, item.annotation, _has_default(item.value)))
    return SourceTypeDescriptor(
        name=node.name,
        module=module,
        fields=fields,
        bases=bases,
        is_enum=is_enum,
        imports=imports,
        source_path=str(path),
    )


def parse_model_source(text: str, module: str, path: Path) -> list[SourceTypeDescriptor]:
    try:
        tree = ast.parse(text, filename=str(path))
    except SyntaxError as exc:
        raise ParseError(f"{path}: {exc.msg} (line {exc.lineno})") from exc

    imports = collect_imports(tree, module)
    descriptors: list[SourceTypeDescriptor] = []
    for node in tree.body:
        if not isinstance(node, ast.ClassDef):
            continue
        descriptors.append(_parse_class(node, module, imports, path))
        # Enums nested in a model class are classified by their simple name.
        for inner in node.body:
            if isinstance(inner, ast.ClassDef) and type_tables.ENUM_BASES & set(_base_names(inner)):
                nested = _parse_class(inner, module, imports, path)
                nested.outer = node.name
                descriptors.append(nested)
    return descriptors


def module_name_for(path: Path, root: Path, package: str) -> str:
    rel = path.relative_to(root).with_suffix("")
    parts = [p for p in rel.parts if p != "__init__"]
    return ".".join([package, *parts]) if parts else package


def package_dir(base_dir: Path, package: str) -> Path:
    return base_dir.joinpath(*package.split("."))


# ------------------------------------------------------------------------------
# Catalog & classification
# ------------------------------------------------------------------------------


class ModelCatalog:
    """All model types found under one source package, addressable by simple name."""

    def __init__(self, types: Iterable[SourceTypeDescriptor]):
        self.types: dict[str, SourceTypeDescriptor] = {}
        for t in types:
            if t.name in self.types:
                logger.warning(
                    "Duplicate model type name %s (%s shadows %s)",
                    t.name,
                    t.qualified_name,
                    self.types[t.name].qualified_name,
                )
            self.types[t.name] = t
        self._resolve_inheritance()

    def __contains__(self, name: str) -> bool:
        return name in self.types

    def __iter__(self):
        return iter(sorted(self.types.values(), key=lambda t: t.name))

    def get(self, name: str) -> Optional[SourceTypeDescriptor]:
        return self.types.get(_short(name))

    def is_model(self, name: Optional[str]) -> bool:
        t = self.get(name) if name else None
        return t is not None and not t.is_enum

    def is_enum(self, name: Optional[str]) -> bool:
        t = self.get(name) if name else None
        return t is not None and t.is_enum

    def has_identity(self, name: Optional[str]) -> bool:
        return self.is_model(name) and self.get(name).has_identity()

    def classify(self, f: FieldDescriptor) -> ClassifiedField:
        if f.container is None and self.is_model(f.type_name):
            target = _short(f.type_name)
            if self.has_identity(f.type_name):
                return ClassifiedField(f, FieldRole.REFERENCE, target=target)
            return ClassifiedField(f, FieldRole.EMBEDDED, target=target)
        if f.container is not None:
            if self.has_identity(f.element_type):
                return ClassifiedField(f, FieldRole.COLLECTION_OF_REFERENCE, target=_short(f.element_type))
            return ClassifiedField(f, FieldRole.COLLECTION_OF_SCALAR)
        storage = type_tables.storage_type_for(f.type_name, is_enum=self.is_enum(f.type_name))
        return ClassifiedField(f, FieldRole.SCALAR, storage_type=storage)

    def _resolve_inheritance(self) -> None:
        resolved: dict[str, list[FieldDescriptor]] = {}

        def fields_of(name: str, trail: tuple[str, ...]) -> list[FieldDescriptor]:
            if name in resolved:
                return resolved[name]
            t = self.types[name]
            inherited: list[FieldDescriptor] = []
            for base in t.bases:
                if base in self.types and base not in trail and not self.types[base].is_enum:
                    for f in fields_of(base, trail + (name,)):
                        if all(f.name != g.name for g in inherited):
                            inherited.append(f)
            own = {f.name for f in t.fields}
            merged = [f for f in inherited if f.name not in own] + t.fields
            resolved[name] = merged
            return merged

        for name in list(self.types):
            if not self.types[name].is_enum:
                self.types[name].fields = fields_of(name, ())


def load_model_catalog(source_dir: Path, source_package: str) -> ModelCatalog:
    root = package_dir(source_dir, source_package)
    descriptors: list[SourceTypeDescriptor] = []
    for path in sorted(root.rglob("*.py")):
        module = module_name_for(path, root, source_package)
        logger.debug("Parsing file: %s", path)
        try:
            descriptors.extend(parse_model_source(path.read_text(encoding="utf-8"), module, path))
        except ParseError as exc:
            logger.warning("Failed to parse %s: %s", path, exc)
    return ModelCatalog(descriptors)
