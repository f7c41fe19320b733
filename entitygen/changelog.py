"""Write Liquibase YAML changesets and the master changelog for registered entities."""

from __future__ import annotations

import dataclasses
import logging
import time
from pathlib import Path
from typing import Any, Optional

import yaml

from entitygen import mapping, naming
from entitygen.execution_mode import ChangelogLocation, ExecutionModeResolver
from entitygen.graph import SchemaGenerationError
from entitygen.scanner import EntityRegistry, RegisteredType, scan_package

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR = "entity-generator"
ID_COLUMN = "id"
ID_TYPE = "uuid"
KEY_TYPE = "integer"
# Zero-padded width of the counter in changeset ids; epoch millis fit in 13 digits.
COUNTER_WIDTH = 13


def database_kind(url: Optional[str]) -> str:
    """``postgresql`` for any PostgreSQL URL, else the URL scheme (``h2``, ``sqlite``...)."""
    if not url:
        return "postgresql"
    scheme = url.split("://", 1)[0].lower()
    if scheme.startswith("jdbc:"):
        scheme = scheme[len("jdbc:"):].split(":", 1)[0]
    scheme = scheme.split("+", 1)[0]
    if scheme in ("postgres", "postgresql"):
        return "postgresql"
    return scheme


def uuid_default(database: str) -> str:
    return "gen_random_uuid()" if database == "postgresql" else "random_uuid()"


def dump_yaml(data: Any) -> str:
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)


def _column(name: str, type_: str, *, nullable: bool = True, **constraints: Any) -> dict:
    column: dict[str, Any] = {"name": name, "type": type_}
    merged = dict(constraints)
    if not nullable:
        merged["nullable"] = False
    if merged:
        column["constraints"] = merged
    return {"column": column}


@dataclasses.dataclass
class ChangesetRecord:
    id: str
    table: str
    author: str
    changes: list[dict]

    @property
    def file_name(self) -> str:
        return f"{self.id}.yml"

    def document(self) -> dict:
        return {
            "databaseChangeLog": [
                {"changeSet": {"id": self.id, "author": self.author, "changes": self.changes}}
            ]
        }


class ChangesetGenerator:
    """One ``<counter>_<table>_init`` changeset per entity, in dependency order."""

    def __init__(
        self,
        registry: EntityRegistry,
        generated_dir: Path,
        database: str = "postgresql",
        author: str = DEFAULT_AUTHOR,
        seed: Optional[int] = None,
    ):
        self.registry = registry
        self.generated_dir = generated_dir
        self.database = database
        self.author = author
        self.seed = seed

    # --- column layout ---

    def embedded_columns(
        self,
        embedded: mapping.Embedded,
        prefix: str = "",
        required: bool = True,
        expanding: tuple[str, ...] = (),
    ) -> list[dict]:
        if embedded.target in expanding:
            path = " -> ".join(expanding + (embedded.target,))
            raise SchemaGenerationError(f"Embedded type {embedded.target} contains itself: {path}")
        target = self.registry.embeddable(embedded.target)
        expanding = expanding + (target.name,)
        prefix = prefix + embedded.prefix
        required = required and embedded.required
        columns = []
        for col in target.info.columns:
            columns.append(_column(prefix + col.column, col.storage_type, nullable=not (required and col.required)))
        for nested in target.info.embedded:
            columns.extend(self.embedded_columns(nested, prefix, required, expanding))
        for ref in target.info.references:
            logger.debug("Reference %s.%s inside an embeddable is not persisted", target.name, ref.name)
        return columns

    def table_columns(self, entry: RegisteredType) -> list[dict]:
        identity = {
            "name": ID_COLUMN,
            "type": ID_TYPE,
            "defaultValueComputed": uuid_default(self.database),
            "constraints": {"primaryKey": True, "nullable": False},
        }
        columns = [{"column": identity}]
        for col in entry.info.columns:
            columns.append(_column(col.column, col.storage_type, nullable=not col.required))
        for embedded in entry.info.embedded:
            columns.extend(self.embedded_columns(embedded))
        return columns

    def reference_changes(self, entry: RegisteredType) -> list[dict]:
        changes = []
        fk_names: set[str] = set()
        for ref in entry.info.references:
            target = self.registry.entity(ref.target)
            fk_name = f"fk_{entry.table}_{target.table}"
            if fk_name in fk_names:
                # Second reference to the same table.
                fk_name = f"fk_{entry.table}_{ref.column}"
            fk_names.add(fk_name)
            changes.append(
                {
                    "addColumn": {
                        "tableName": entry.table,
                        "columns": [
                            _column(
                                ref.column,
                                ID_TYPE,
                                nullable=not ref.required,
                                references=f"{target.table}({ID_COLUMN})",
                                foreignKeyName=fk_name,
                            )
                        ],
                    }
                }
            )
        return changes

    def join_table_name(self, entry: RegisteredType, collection: mapping.MappedCollection) -> str:
        return f"{entry.table}_{naming.to_snake_case(collection.name)}"

    def join_table_changes(self, entry: RegisteredType) -> list[dict]:
        changes = []
        for collection in entry.info.collections:
            self.registry.entity(collection.target)
            columns = [
                _column(f"{entry.table}_id", ID_TYPE, nullable=False),
                _column(collection.id_column, ID_TYPE, nullable=False),
            ]
            if collection.key_column:
                columns.append(_column(collection.key_column, KEY_TYPE, nullable=False))
            changes.append(
                {"createTable": {"tableName": self.join_table_name(entry, collection), "columns": columns}}
            )
        return changes

    def changes_for(self, entry: RegisteredType) -> list[dict]:
        changes = [{"createTable": {"tableName": entry.table, "columns": self.table_columns(entry)}}]
        changes.extend(self.reference_changes(entry))
        changes.extend(self.join_table_changes(entry))
        return changes

    # --- validation ---

    def check_collisions(self, changesets: list[ChangesetRecord]) -> None:
        tables: dict[str, str] = {}
        for record in changesets:
            for change in record.changes:
                body = next(iter(change.values()))
                table = body["tableName"]
                if "createTable" in change:
                    key = table.lower()
                    if key in tables:
                        raise SchemaGenerationError(
                            f"Table name {table!r} is produced by both {tables[key]} and {record.table}"
                        )
                    tables[key] = record.table
        per_table: dict[str, set[str]] = {}
        for record in changesets:
            for change in record.changes:
                body = next(iter(change.values()))
                seen = per_table.setdefault(body["tableName"].lower(), set())
                for column in body["columns"]:
                    name = column["column"]["name"].lower()
                    if name in seen:
                        raise SchemaGenerationError(
                            f"Duplicate column {name!r} in table {body['tableName']!r}"
                        )
                    seen.add(name)

    # --- output ---

    def purge(self) -> int:
        removed = 0
        if self.generated_dir.is_dir():
            for path in self.generated_dir.glob("*.yml"):
                path.unlink()
                removed += 1
        if removed:
            logger.info("Removed %d previously generated changeset(s)", removed)
        return removed

    def build(self) -> list[ChangesetRecord]:
        order = self.registry.creation_order()
        counter = self.seed if self.seed is not None else int(time.time() * 1000)
        records = []
        for entry in order:
            record_id = f"{counter:0{COUNTER_WIDTH}d}_{entry.table}_init"
            records.append(ChangesetRecord(record_id, entry.table, self.author, self.changes_for(entry)))
            counter += 1
        self.check_collisions(records)
        return records

    def generate(self) -> list[Path]:
        """Build every changeset, then replace the generated directory's contents.

        The previous changesets are only purged once the new set has been built.
        On any failure the generated directory is left empty.
        """
        written: list[Path] = []
        try:
            records = self.build()
            self.purge()
            self.generated_dir.mkdir(parents=True, exist_ok=True)
            for record in records:
                path = self.generated_dir / record.file_name
                path.write_text(dump_yaml(record.document()), encoding="utf-8")
                written.append(path)
                logger.info("Wrote changeset %s", path.name)
        except Exception:
            self.purge()
            raise
        return written


def write_master_changelog(location: ChangelogLocation) -> Path:
    """Include generated changesets then patches, each in filename order."""
    includes = []
    for directory, prefix in ((location.generated_dir, "generated"), (location.patches_dir, "patches")):
        if not directory.is_dir():
            continue
        for path in sorted(directory.glob("*.yml")):
            includes.append({"include": {"file": f"{prefix}/{path.name}", "relativeToChangelogFile": True}})
    master = location.master_file
    master.parent.mkdir(parents=True, exist_ok=True)
    master.write_text(dump_yaml({"databaseChangeLog": includes}), encoding="utf-8")
    logger.info("Wrote master changelog %s (%d includes)", master, len(includes))
    return master


class SchemaCreator:
    """Resolve the changelog root, then write changesets and the master file."""

    def __init__(
        self,
        base_package: str,
        resolver: ExecutionModeResolver,
        database: str = "postgresql",
        author: str = DEFAULT_AUTHOR,
        seed: Optional[int] = None,
    ):
        self.base_package = base_package
        self.resolver = resolver
        self.database = database
        self.author = author
        self.seed = seed

    def create(self, registry: Optional[EntityRegistry] = None) -> ChangelogLocation:
        location = self.resolver.resolve()
        if registry is None:
            registry = scan_package(self.base_package)
        generator = ChangesetGenerator(
            registry,
            location.generated_dir,
            database=self.database,
            author=self.author,
            seed=self.seed,
        )
        try:
            generator.generate()
        except Exception:
            # No manifest may outlive its changesets.
            location.master_file.unlink(missing_ok=True)
            raise
        write_master_changelog(location)
        return location
