#!/usr/bin/env python3
"""Generate persistence-mapped entity modules from wire-model sources.

Usage:
    entitygen-generate SOURCE_DIR TARGET_DIR SOURCE_PACKAGE TARGET_PACKAGE [EXCLUDES] [--check]

Every model type with an ``id`` field becomes ``<snake_name>_entity.py`` in the
target package. Identity-less model types that are embedded by a generated
type become embeddable value classes. ``--check`` compares the rendered output
with the files on disk and exits non-zero on drift.
"""

from __future__ import annotations

import argparse
import dataclasses
import difflib
import json
import logging
import re
import sys
from pathlib import Path
from typing import ClassVar, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from entitygen import naming, type_tables
from entitygen.model_parser import (
    ClassifiedField,
    FieldRole,
    ModelCatalog,
    SourceTypeDescriptor,
    load_model_catalog,
    package_dir,
)

logger = logging.getLogger(__name__)

GENERATED_HEADER = "# Generated by entitygen"
TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
ENTITY_TEMPLATE = "entity.py.j2"

PACKAGE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")

# Names available without an import in a generated module.
_PRELUDE_NAMES = frozenset(
    {
        "None",
        "str",
        "int",
        "float",
        "bool",
        "bytes",
        "bytearray",
        "object",
        "list",
        "set",
        "frozenset",
        "dict",
        "tuple",
        "Optional",
        "uuid",
    }
)

# Members of the generated class that a wire field must not shadow.
_RESERVED_MEMBERS = frozenset({"from_wire", "to_wire"})


class GenerationError(Exception):
    """Raised when a single model type cannot be turned into an entity module."""


# ------------------------------------------------------------------------------
# Type specs
# ------------------------------------------------------------------------------


@dataclasses.dataclass
class FieldSpec:
    name: str
    role: FieldRole
    annotation: str  # storage slot type
    public_annotation: str  # property type, the wire-side shape
    column: Optional[str] = None
    storage_type: Optional[str] = None
    required: bool = False
    target_class: Optional[str] = None
    target_wire: Optional[str] = None
    target_id_as_text: bool = True
    factory: Optional[str] = None
    ordered: bool = False
    local_import: Optional[str] = None

    @property
    def attr(self) -> str:
        return f"_{self.name}"

    @property
    def mapping(self) -> Optional[str]:
        """Source text of the mapping metadata entry, None when not persisted."""
        name = json.dumps(self.name)
        if self.role is FieldRole.SCALAR:
            if self.storage_type is None:
                return None
            return (
                f"mapping.Column({name}, column={json.dumps(self.column)}, "
                f"storage_type={json.dumps(self.storage_type)}, required={self.required})"
            )
        if self.role is FieldRole.REFERENCE:
            return (
                f"mapping.Reference({name}, column={json.dumps(self.column)}, "
                f"target={json.dumps(self.target_class)}, required={self.required})"
            )
        if self.role is FieldRole.EMBEDDED:
            return (
                f"mapping.Embedded({name}, prefix={json.dumps(self.column)}, "
                f"target={json.dumps(self.target_class)}, required={self.required})"
            )
        if self.role is FieldRole.COLLECTION_OF_REFERENCE:
            snake = naming.to_snake_case(self.name)
            key = json.dumps(f"{snake}_position") if self.ordered else "None"
            return (
                f"mapping.MappedCollection({name}, target={json.dumps(self.target_class)}, "
                f"id_column={json.dumps(snake + '_id')}, key_column={key})"
            )
        return f"mapping.ScalarCollection({name}, column={json.dumps(self.column)})"


@dataclasses.dataclass
class EmbeddableSpec:
    """Render input for an identity-less value class inlined into its owner."""

    model: SourceTypeDescriptor
    class_name: str
    module_name: str
    fields: list[FieldSpec]
    runtime_imports: list[str] = dataclasses.field(default_factory=list)
    type_imports: list[str] = dataclasses.field(default_factory=list)
    local_imports: list[str] = dataclasses.field(default_factory=list)

    is_entity: ClassVar[bool] = False

    @property
    def wire_name(self) -> str:
        return self.model.name

    @property
    def file_name(self) -> str:
        return f"{self.module_name}.py"


@dataclasses.dataclass
class GeneratedTypeSpec(EmbeddableSpec):
    """Render input for a table-backed aggregate root."""

    table_name: str = ""
    id_as_text: bool = True

    is_entity: ClassVar[bool] = True


@dataclasses.dataclass
class GeneratorConfig:
    source_dir: Path
    target_dir: Path
    source_package: str
    target_package: str
    excluded: frozenset[str] = frozenset()

    @property
    def source_path(self) -> Path:
        return package_dir(self.source_dir, self.source_package)

    @property
    def target_path(self) -> Path:
        return package_dir(self.target_dir, self.target_package)

    def is_excluded(self, model: SourceTypeDescriptor) -> bool:
        return model.qualified_name in self.excluded or model.name in self.excluded


@dataclasses.dataclass
class ProcessingStats:
    processed: int = 0
    entities: int = 0
    embeddables: int = 0
    skipped: int = 0
    failed: int = 0

    def summary_lines(self) -> list[str]:
        return [
            "Generation summary:",
            f"  processed:   {self.processed}",
            f"  entities:    {self.entities}",
            f"  embeddables: {self.embeddables}",
            f"  skipped:     {self.skipped}",
            f"  failed:      {self.failed}",
        ]


# ------------------------------------------------------------------------------
# Spec building
# ------------------------------------------------------------------------------


def _id_as_text(model: SourceTypeDescriptor) -> bool:
    identity = model.identity_field()
    return identity is None or identity.type_name.rsplit(".", 1)[-1] != "UUID"


def _import_for(name: str, model: SourceTypeDescriptor, catalog: ModelCatalog) -> Optional[str]:
    if name in _PRELUDE_NAMES:
        return None
    if name in model.imports:
        return model.imports[name]
    t = catalog.get(name)
    if t is not None and t.name == name and t.outer is None:
        return f"from {t.module} import {t.name}"
    return None


class _ImportSet:
    def __init__(self) -> None:
        self.runtime: set[str] = set()
        self.types: set[str] = set()
        self.local: set[str] = set()

    def add_names(self, names, model: SourceTypeDescriptor, catalog: ModelCatalog) -> None:
        for name in names:
            line = _import_for(name, model, catalog)
            if line is not None:
                self.types.add(line)

    def finish(self) -> tuple[list[str], list[str], list[str]]:
        types = self.types - self.runtime
        return sorted(self.runtime), sorted(types), sorted(self.local)


def build_field_spec(
    classified: ClassifiedField,
    owner: SourceTypeDescriptor,
    catalog: ModelCatalog,
    emitted: set[str],
    imports: _ImportSet,
) -> FieldSpec:
    f = classified.field
    role = classified.role
    if f.name in _RESERVED_MEMBERS:
        raise GenerationError(f"field name {f.name!r} clashes with a generated method")

    if role is FieldRole.SCALAR:
        imports.add_names(f.names, owner, catalog)
        if classified.storage_type is None:
            logger.debug("%s.%s (%s) has no storage type; not persisted", owner.name, f.name, f.type_name)
        return FieldSpec(
            name=f.name,
            role=role,
            annotation=f.annotation,
            public_annotation=f.annotation,
            column=naming.column_name_for(f.name),
            storage_type=classified.storage_type,
            required=f.required,
        )

    if role is FieldRole.COLLECTION_OF_SCALAR:
        imports.add_names(f.names, owner, catalog)
        logger.debug("%s.%s is a collection of scalars; not persisted", owner.name, f.name)
        return FieldSpec(
            name=f.name,
            role=role,
            annotation=f.annotation,
            public_annotation=f.annotation,
            column=naming.column_name_for(f.name),
            factory=type_tables.container_factory(f.container),
            ordered=type_tables.is_ordered(f.container),
        )

    target = catalog.get(classified.target)
    if target is None or target.name not in emitted:
        raise GenerationError(f"{owner.name}.{f.name} targets {classified.target}, which is not generated")
    target_class = naming.entity_class_name(target.name)
    target_import = f"from .{naming.entity_module_name(target.name)} import {target_class}"
    is_self = target.name == owner.name

    if role is FieldRole.REFERENCE:
        imports.runtime.add(f"from {target.module} import {target.name}")
        return FieldSpec(
            name=f.name,
            role=role,
            annotation="mapping.AggregateReference",
            public_annotation="mapping.AggregateReference",
            column=naming.persisted_name(naming.to_snake_case(f.name) + "_id"),
            required=f.required,
            target_class=target_class,
            target_wire=target.name,
            target_id_as_text=_id_as_text(target),
        )

    imports.add_names(f.names, owner, catalog)
    if not is_self:
        imports.types.add(target_import)
        imports.local.add(target_import)

    if role is FieldRole.EMBEDDED:
        if is_self:
            raise GenerationError(f"{owner.name}.{f.name} embeds {owner.name} in itself")
        return FieldSpec(
            name=f.name,
            role=role,
            annotation=target_class,
            public_annotation=f.annotation,
            column=naming.to_snake_case(f.name) + "_",
            required=f.required,
            target_class=target_class,
            local_import=target_import,
        )

    factory = type_tables.container_factory(f.container)
    return FieldSpec(
        name=f.name,
        role=role,
        annotation=f"{factory}[{target_class}]",
        public_annotation=f.annotation,
        target_class=target_class,
        factory=factory,
        ordered=type_tables.is_ordered(f.container),
        local_import=None if is_self else target_import,
    )


def build_type_spec(model: SourceTypeDescriptor, catalog: ModelCatalog, emitted: set[str]) -> EmbeddableSpec:
    imports = _ImportSet()
    imports.runtime.add(f"from {model.module} import {model.name}")
    is_entity = model.has_identity()

    fields = []
    for f in model.fields:
        if is_entity and f.name == type_tables.IDENTITY_FIELD:
            continue
        fields.append(build_field_spec(catalog.classify(f), model, catalog, emitted, imports))

    runtime, types, local = imports.finish()
    common = dict(
        model=model,
        class_name=naming.entity_class_name(model.name),
        module_name=naming.entity_module_name(model.name),
        fields=fields,
        runtime_imports=runtime,
        type_imports=types,
        local_imports=local,
    )
    if not is_entity:
        return EmbeddableSpec(**common)
    return GeneratedTypeSpec(
        table_name=naming.table_name_for(model.name),
        id_as_text=_id_as_text(model),
        **common,
    )


def select_models(
    catalog: ModelCatalog, config: GeneratorConfig, stats: ProcessingStats
) -> tuple[list[SourceTypeDescriptor], list[SourceTypeDescriptor]]:
    """Pick the entity types and the embeddable types they reach."""
    entities: list[SourceTypeDescriptor] = []
    for model in catalog:
        if model.is_enum:
            continue
        stats.processed += 1
        if config.is_excluded(model):
            logger.info("Skipping excluded type %s", model.qualified_name)
            stats.skipped += 1
            continue
        if model.has_identity():
            entities.append(model)
        else:
            logger.debug("%s has no identity field", model.qualified_name)

    embeddables: dict[str, SourceTypeDescriptor] = {}
    pending = list(entities)
    while pending:
        model = pending.pop()
        for f in model.fields:
            classified = catalog.classify(f)
            if classified.role is not FieldRole.EMBEDDED or classified.target in embeddables:
                continue
            target = catalog.get(classified.target)
            if config.is_excluded(target):
                continue
            embeddables[target.name] = target
            pending.append(target)

    skipped = [
        m for m in catalog if not m.is_enum and not m.has_identity()
        and m.name not in embeddables and not config.is_excluded(m)
    ]
    for model in skipped:
        logger.info("Skipping %s: no identity field and not embedded by any entity", model.qualified_name)
    stats.skipped += len(skipped)
    return entities, sorted(embeddables.values(), key=lambda m: m.name)


# ------------------------------------------------------------------------------
# Rendering
# ------------------------------------------------------------------------------


def template_environment() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        autoescape=select_autoescape(enabled_extensions=()),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )
    env.filters["quote"] = json.dumps
    return env


def render_type(spec: EmbeddableSpec, env: Optional[Environment] = None) -> str:
    env = env or template_environment()
    return env.get_template(ENTITY_TEMPLATE).render(spec=spec, header=GENERATED_HEADER)


def generate_outputs(config: GeneratorConfig) -> tuple[dict[Path, str], ProcessingStats]:
    """Render every qualifying model type; returns target path -> module text.

    A type that fails is dropped from the generated set, and the remaining types
    are rendered again until no further type fails, so nothing is emitted that
    refers to a module which is never written.
    """
    stats = ProcessingStats()
    catalog = load_model_catalog(config.source_dir, config.source_package)
    entities, embeddables = select_models(catalog, config, stats)
    pending = entities + embeddables
    emitted = {m.name for m in pending}

    env = template_environment()
    while True:
        rendered: list[tuple[EmbeddableSpec, str]] = []
        failed = []
        for model in pending:
            try:
                spec = build_type_spec(model, catalog, emitted)
                rendered.append((spec, render_type(spec, env)))
            except Exception as exc:
                logger.error("Failed to generate %s: %s", model.qualified_name, exc)
                failed.append(model)
        if not failed:
            break
        stats.failed += len(failed)
        emitted -= {m.name for m in failed}
        pending = [m for m in pending if m.name in emitted]

    outputs: dict[Path, str] = {}
    for spec, text in rendered:
        outputs[config.target_path / spec.file_name] = text
        if spec.is_entity:
            stats.entities += 1
        else:
            stats.embeddables += 1
        logger.debug("Rendered %s", spec.class_name)
    return outputs, stats


# ------------------------------------------------------------------------------
# Output
# ------------------------------------------------------------------------------


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def is_generated_file(path: Path) -> bool:
    try:
        with path.open(encoding="utf-8") as fh:
            return fh.readline().startswith(GENERATED_HEADER)
    except UnicodeDecodeError:
        return False


def stale_files(target_path: Path, outputs: dict[Path, str]) -> list[Path]:
    if not target_path.is_dir():
        return []
    return [
        p for p in sorted(target_path.glob("*_entity.py"))
        if p not in outputs and is_generated_file(p)
    ]


def ensure_packages(target_dir: Path, target_package: str) -> None:
    path = target_dir
    for part in target_package.split("."):
        path = path / part
        path.mkdir(parents=True, exist_ok=True)
        init = path / "__init__.py"
        if not init.exists():
            init.write_text("", encoding="utf-8")


def write_outputs(config: GeneratorConfig, outputs: dict[Path, str]) -> None:
    ensure_packages(config.target_dir, config.target_package)
    for path in stale_files(config.target_path, outputs):
        logger.info("Removing stale generated module %s", path)
        path.unlink()
    for path, content in sorted(outputs.items()):
        write_text(path, content)
        logger.info("Generated %s", path)


def check_equal(path: Path, generated: str) -> bool:
    if not path.exists():
        print(f"[check] missing file: {path}", file=sys.stderr)
        return False

    existing = path.read_text(encoding="utf-8")
    if existing == generated:
        return True

    print(f"[check] drift detected: {path}", file=sys.stderr)
    diff = difflib.unified_diff(
        existing.splitlines(),
        generated.splitlines(),
        fromfile=str(path),
        tofile=f"generated:{path}",
        lineterm="",
    )
    for idx, line in enumerate(diff):
        if idx > 200:
            print("... (diff truncated)", file=sys.stderr)
            break
        print(line, file=sys.stderr)
    return False


def check_outputs(config: GeneratorConfig, outputs: dict[Path, str]) -> bool:
    ok = True
    for path, content in sorted(outputs.items()):
        ok = check_equal(path, content) and ok
    for path in stale_files(config.target_path, outputs):
        print(f"[check] stale file: {path}", file=sys.stderr)
        ok = False
    return ok


# ------------------------------------------------------------------------------
# CLI
# ------------------------------------------------------------------------------


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate persistent entity modules from wire-model sources")
    parser.add_argument("source_dir", help="Directory that contains the source package")
    parser.add_argument("target_dir", help="Directory the target package is written under")
    parser.add_argument("source_package", help="Dotted package holding the wire models, e.g. resos.model")
    parser.add_argument("target_package", help="Dotted package for generated entities, e.g. resos.jdbc")
    parser.add_argument(
        "excludes",
        nargs="?",
        default="",
        help="Comma-separated model names (simple or fully qualified) to skip",
    )
    parser.add_argument("--check", action="store_true", help="Verify outputs are up-to-date without writing")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    for option in ("source_package", "target_package"):
        if not PACKAGE_RE.match(getattr(args, option)):
            parser.error(f"{option} is not a valid dotted package name: {getattr(args, option)!r}")
    source_path = package_dir(Path(args.source_dir), args.source_package)
    if not source_path.is_dir():
        parser.error(f"source package directory does not exist: {source_path}")
    return args


def config_from_args(args: argparse.Namespace) -> GeneratorConfig:
    excluded = frozenset(e.strip() for e in args.excludes.split(",") if e.strip())
    return GeneratorConfig(
        source_dir=Path(args.source_dir),
        target_dir=Path(args.target_dir),
        source_package=args.source_package,
        target_package=args.target_package,
        excluded=excluded,
    )


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    config = config_from_args(args)
    print(f"Source path: {config.source_path}")
    print(f"Target path: {config.target_path}")
    if config.excluded:
        print(f"Excluded: {', '.join(sorted(config.excluded))}")

    outputs, stats = generate_outputs(config)

    if args.check:
        return 0 if check_outputs(config, outputs) else 1

    write_outputs(config, outputs)
    for line in stats.summary_lines():
        print(line)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
