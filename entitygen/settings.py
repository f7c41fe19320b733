"""Application configuration loaded from YAML."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from entitygen.changelog import DEFAULT_AUTHOR
from entitygen.execution_mode import MASTER_CHANGELOG

DEFAULT_CONFIG = "app.yaml"
DEFAULT_DATASOURCE_URL = "postgresql://localhost:5432/postgres"

ENV_DATASOURCE_URL = "DATASOURCE_URL"
ENV_DATASOURCE_USERNAME = "DATASOURCE_USERNAME"
ENV_DATASOURCE_PASSWORD = "DATASOURCE_PASSWORD"


@dataclasses.dataclass
class LiquibaseSettings:
    enabled: bool = True
    command: str = "liquibase"
    changelog_file: str = MASTER_CHANGELOG
    extra_args: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class Settings:
    base_package: str
    app_name: str = "application"
    datasource_url: str = DEFAULT_DATASOURCE_URL
    datasource_username: Optional[str] = None
    datasource_password: Optional[str] = None
    schema_enabled: bool = True
    resource_package: Optional[str] = None
    changelog_author: str = DEFAULT_AUTHOR
    changelog_seed: Optional[int] = None
    liquibase: LiquibaseSettings = dataclasses.field(default_factory=LiquibaseSettings)

    def __post_init__(self) -> None:
        if self.resource_package is None:
            self.resource_package = self.base_package


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, Mapping):
        raise ValueError(f"config section {name!r} must be a mapping")
    return value


def settings_from_dict(data: Optional[Mapping[str, Any]], environ: Optional[Mapping[str, str]] = None) -> Settings:
    data = data or {}
    environ = os.environ if environ is None else environ

    app = _section(data, "app")
    entity = _section(data, "entity")
    datasource = _section(data, "datasource")
    schema = _section(data, "schema")
    changelog = _section(data, "changelog")
    liquibase = _section(data, "liquibase")

    base_package = entity.get("base_package")
    if not base_package:
        raise ValueError("entity.base_package is required")

    extra_args = liquibase.get("extra_args") or []
    if not isinstance(extra_args, list):
        raise ValueError("liquibase.extra_args must be a list")
    seed = changelog.get("seed")

    return Settings(
        base_package=str(base_package),
        app_name=str(app.get("name", "application")),
        datasource_url=environ.get(ENV_DATASOURCE_URL) or datasource.get("url") or DEFAULT_DATASOURCE_URL,
        datasource_username=environ.get(ENV_DATASOURCE_USERNAME) or datasource.get("username"),
        datasource_password=environ.get(ENV_DATASOURCE_PASSWORD) or datasource.get("password"),
        schema_enabled=bool(schema.get("enabled", True)),
        resource_package=changelog.get("resource_package"),
        changelog_author=str(changelog.get("author") or DEFAULT_AUTHOR),
        changelog_seed=int(seed) if seed is not None else None,
        liquibase=LiquibaseSettings(
            enabled=bool(liquibase.get("enabled", True)),
            command=str(liquibase.get("command") or "liquibase"),
            changelog_file=str(liquibase.get("changelog_file") or MASTER_CHANGELOG),
            extra_args=[str(a) for a in extra_args],
        ),
    )


def load_settings(path: Path, environ: Optional[Mapping[str, str]] = None) -> Settings:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is not None and not isinstance(data, Mapping):
        raise ValueError(f"{path}: top level must be a mapping")
    return settings_from_dict(data, environ)
