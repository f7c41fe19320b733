#!/usr/bin/env python3
"""Process-start pipeline: generate the schema changelog, then migrate.

Usage:
    entitygen-startup [--config app.yaml] [--no-migrate]

Phases declare the phases they run after and are executed in dependency
order. The ``schema`` phase writes changesets and publishes the changelog
directory on the startup context; the ``migrate`` phase hands that directory
to the migration engine through its customizers before running it.
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import subprocess
import sys
from pathlib import Path
from typing import Callable, Iterable, Optional, Protocol

from entitygen.changelog import SchemaCreator, database_kind
from entitygen.execution_mode import CHANGELOG_DIR_PROPERTY, ChangelogLocation, ExecutionModeResolver
from entitygen.graph import DependencyGraph, SchemaGenerationError
from entitygen.settings import DEFAULT_CONFIG, Settings, load_settings

logger = logging.getLogger(__name__)

SCHEMA_PHASE = "schema"
MIGRATE_PHASE = "migrate"


class MigrationError(Exception):
    """Raised when the migration engine fails; fatal to startup."""


@dataclasses.dataclass
class StartupContext:
    settings: Settings
    properties: dict[str, str] = dataclasses.field(default_factory=dict)
    changelog: Optional[ChangelogLocation] = None


@dataclasses.dataclass(frozen=True)
class Phase:
    name: str
    run: Callable[[StartupContext], None]
    after: tuple[str, ...] = ()


class StartupPipeline:
    def __init__(self, phases: Iterable[Phase] = ()):
        self.phases: dict[str, Phase] = {}
        for phase in phases:
            self.add(phase)

    def add(self, phase: Phase) -> None:
        if phase.name in self.phases:
            raise ValueError(f"duplicate startup phase {phase.name!r}")
        self.phases[phase.name] = phase

    def order(self) -> list[Phase]:
        graph = DependencyGraph(self.phases)
        for phase in self.phases.values():
            for predecessor in phase.after:
                if predecessor not in self.phases:
                    raise ValueError(f"phase {phase.name!r} runs after unknown phase {predecessor!r}")
                graph.add_edge(phase.name, predecessor)
        return [self.phases[name] for name in graph.topological_order()]

    def run(self, context: StartupContext) -> list[str]:
        executed = []
        for phase in self.order():
            logger.info("Startup phase: %s", phase.name)
            phase.run(context)
            executed.append(phase.name)
        return executed


# ------------------------------------------------------------------------------
# Migration engine
# ------------------------------------------------------------------------------


@dataclasses.dataclass
class EngineSettings:
    command: str
    changelog_file: str
    search_path: Optional[str] = None
    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    extra_args: list[str] = dataclasses.field(default_factory=list)


class EngineCustomizer(Protocol):
    def customize(self, settings: EngineSettings, context: StartupContext) -> None:
        ...


class MigrationEngine(Protocol):
    def run(self, settings: EngineSettings) -> None:
        ...


def jdbc_url(url: Optional[str]) -> Optional[str]:
    if not url or url.startswith("jdbc:"):
        return url
    scheme, sep, rest = url.partition("://")
    if not sep:
        return url
    scheme = scheme.split("+", 1)[0]
    if scheme == "postgres":
        scheme = "postgresql"
    return f"jdbc:{scheme}://{rest}"


class LiquibaseCli(MigrationEngine):
    """Runs ``liquibase update`` as a subprocess."""

    def command_line(self, settings: EngineSettings) -> list[str]:
        cmd = [settings.command, f"--changelog-file={settings.changelog_file}"]
        if settings.search_path:
            cmd.append(f"--search-path={settings.search_path}")
        if settings.url:
            cmd.append(f"--url={jdbc_url(settings.url)}")
        if settings.username:
            cmd.append(f"--username={settings.username}")
        if settings.password:
            cmd.append(f"--password={settings.password}")
        cmd.extend(settings.extra_args)
        cmd.append("update")
        return cmd

    def run(self, settings: EngineSettings) -> None:
        cmd = self.command_line(settings)
        shown = ["--password=***" if a.startswith("--password=") else a for a in cmd]
        logger.info("Running %s", " ".join(shown))
        try:
            r = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as exc:
            raise MigrationError(f"cannot start {settings.command}: {exc}") from exc
        for line in (r.stdout or "").splitlines():
            logger.info("liquibase: %s", line)
        if r.returncode != 0:
            raise MigrationError(
                f"liquibase update failed ({r.returncode}): {r.stderr.strip() or r.stdout.strip()}"
            )


class LiquibaseCustomizer:
    """Point the engine at the published changelog directory, if any."""

    def customize(self, settings: EngineSettings, context: StartupContext) -> None:
        changelog_dir = context.properties.get(CHANGELOG_DIR_PROPERTY)
        if not changelog_dir:
            logger.debug("%s not set; keeping search path %s", CHANGELOG_DIR_PROPERTY, settings.search_path)
            return
        master = Path(changelog_dir) / settings.changelog_file
        if not master.is_file():
            logger.warning("Master changelog not found at %s", master)
        settings.search_path = changelog_dir
        logger.info("Liquibase search path set to %s", changelog_dir)


# ------------------------------------------------------------------------------
# Phases
# ------------------------------------------------------------------------------


def resolver_for(settings: Settings) -> ExecutionModeResolver:
    return ExecutionModeResolver(settings.resource_package, settings.app_name)


def schema_phase(resolver: Optional[ExecutionModeResolver] = None) -> Phase:
    def run(context: StartupContext) -> None:
        settings = context.settings
        if not settings.schema_enabled:
            logger.info("Schema generation disabled")
            return
        creator = SchemaCreator(
            settings.base_package,
            resolver or resolver_for(settings),
            database=database_kind(settings.datasource_url),
            author=settings.changelog_author,
            seed=settings.changelog_seed,
        )
        location = creator.create()
        context.changelog = location
        if location.is_packaged:
            context.properties[CHANGELOG_DIR_PROPERTY] = str(location.root)

    return Phase(SCHEMA_PHASE, run)


def engine_settings(context: StartupContext) -> EngineSettings:
    settings = context.settings
    search_path = str(context.changelog.root) if context.changelog is not None else None
    return EngineSettings(
        command=settings.liquibase.command,
        changelog_file=settings.liquibase.changelog_file,
        search_path=search_path,
        url=settings.datasource_url,
        username=settings.datasource_username,
        password=settings.datasource_password,
        extra_args=list(settings.liquibase.extra_args),
    )


def migrate_phase(
    engine: Optional[MigrationEngine] = None,
    customizers: Iterable[EngineCustomizer] = (),
) -> Phase:
    engine = engine or LiquibaseCli()
    customizers = list(customizers) or [LiquibaseCustomizer()]

    def run(context: StartupContext) -> None:
        if not context.settings.liquibase.enabled:
            logger.info("Migration disabled")
            return
        settings = engine_settings(context)
        for customizer in customizers:
            customizer.customize(settings, context)
        engine.run(settings)

    return Phase(MIGRATE_PHASE, run, after=(SCHEMA_PHASE,))


def default_pipeline(
    migrate: bool = True,
    engine: Optional[MigrationEngine] = None,
    resolver: Optional[ExecutionModeResolver] = None,
) -> StartupPipeline:
    pipeline = StartupPipeline([schema_phase(resolver)])
    if migrate:
        pipeline.add(migrate_phase(engine))
    return pipeline


# ------------------------------------------------------------------------------
# CLI
# ------------------------------------------------------------------------------


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate the schema changelog and run migrations")
    parser.add_argument("--config", default=DEFAULT_CONFIG, help="Application config YAML")
    parser.add_argument("--no-migrate", action="store_true", help="Only write changelogs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        settings = load_settings(Path(args.config))
    except (OSError, ValueError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    context = StartupContext(settings)
    try:
        executed = default_pipeline(migrate=not args.no_migrate).run(context)
    except (SchemaGenerationError, MigrationError) as exc:
        print(f"Startup failed: {exc}", file=sys.stderr)
        return 1
    print(f"Startup complete: {', '.join(executed)}")
    if context.changelog is not None:
        print(f"Changelog root: {context.changelog.root}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
