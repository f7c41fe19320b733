"""Decide where changelogs are written: beside the resources, or in a temp dir.

When the resource package is imported from an archive (zipapp, pex, zip on
``sys.path``) nothing can be written next to it, so changelogs go to a stable
per-archive directory under the system temp dir and the bundled hand-authored
patches are copied there.
"""

from __future__ import annotations

import dataclasses
import hashlib
import importlib.resources
import importlib.util
import logging
import tempfile
import zipimport
from enum import Enum
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

CHANGELOG_DIR_PROPERTY = "liquibase.changelog.dir"
CHANGELOG_DIR_NAME = "liquibase-changelogs"

CHANGELOG_DIR = "db/changelog"
GENERATED_DIR = f"{CHANGELOG_DIR}/generated"
PATCHES_DIR = f"{CHANGELOG_DIR}/patches"
MASTER_CHANGELOG = f"{CHANGELOG_DIR}/db.changelog-master.yml"

ARCHIVE_SUFFIXES = (".zip", ".pyz", ".pex")


class ExecutionMode(Enum):
    EXPANDED = "expanded"
    PACKAGED = "packaged"


@dataclasses.dataclass(frozen=True)
class ChangelogLocation:
    mode: ExecutionMode
    root: Path
    archive: Optional[str] = None

    @property
    def is_packaged(self) -> bool:
        return self.mode is ExecutionMode.PACKAGED

    @property
    def generated_dir(self) -> Path:
        return self.root / GENERATED_DIR

    @property
    def patches_dir(self) -> Path:
        return self.root / PATCHES_DIR

    @property
    def master_file(self) -> Path:
        return self.root / MASTER_CHANGELOG


def archive_of(location: Optional[str]) -> Optional[str]:
    """Return the archive file containing ``location``, if any."""
    if not location:
        return None
    path = Path(location)
    for candidate in (path, *path.parents):
        if candidate.suffix.lower() in ARCHIVE_SUFFIXES and candidate.is_file():
            return str(candidate)
    return None


def stable_temp_root(archive: Optional[str], app_name: str, temp_dir: Optional[Path] = None) -> Path:
    digest = hashlib.sha1(f"{archive or ''}{app_name}".encode("utf-8")).hexdigest()
    base = temp_dir if temp_dir is not None else Path(tempfile.gettempdir())
    return base / digest / CHANGELOG_DIR_NAME


class ExecutionModeResolver:
    def __init__(self, resource_package: str, app_name: str, temp_dir: Optional[Path] = None):
        self.resource_package = resource_package
        self.app_name = app_name
        self.temp_dir = temp_dir

    def detect(self) -> tuple[ExecutionMode, Optional[str], Optional[Path]]:
        """Return (mode, archive path, package directory on disk)."""
        try:
            spec = importlib.util.find_spec(self.resource_package)
        except (ImportError, ValueError) as exc:
            logger.warning("Cannot resolve resource package %s: %s", self.resource_package, exc)
            spec = None
        if spec is None:
            logger.warning(
                "Resource package %s not found; assuming packaged execution", self.resource_package
            )
            return ExecutionMode.PACKAGED, None, None

        if isinstance(spec.loader, zipimport.zipimporter):
            return ExecutionMode.PACKAGED, spec.loader.archive, None

        locations = list(spec.submodule_search_locations or ())
        origin = spec.origin if spec.has_location and spec.origin else (locations[0] if locations else None)
        archive = archive_of(origin)
        if archive is not None:
            return ExecutionMode.PACKAGED, archive, None
        if origin is None:
            logger.warning("Resource package %s has no location; assuming packaged execution", self.resource_package)
            return ExecutionMode.PACKAGED, None, None
        directory = Path(locations[0]) if locations else Path(origin).parent
        return ExecutionMode.EXPANDED, None, directory

    def resolve(self) -> ChangelogLocation:
        mode, archive, directory = self.detect()
        if mode is ExecutionMode.EXPANDED:
            logger.info("Running from an expanded layout; changelogs go to %s", directory)
            return ChangelogLocation(mode, directory)

        root = stable_temp_root(archive, self.app_name, self.temp_dir)
        root.mkdir(parents=True, exist_ok=True)
        logger.info("Running from archive %s; changelogs go to %s", archive or "<unknown>", root)
        location = ChangelogLocation(mode, root, archive)
        self.copy_patches(location)
        return location

    def copy_patches(self, location: ChangelogLocation) -> list[Path]:
        """Copy bundled ``db/changelog/patches/*.yml`` into the changelog root."""
        target = location.patches_dir
        target.mkdir(parents=True, exist_ok=True)
        for stale in target.glob("*.yml"):
            stale.unlink()
        try:
            source = importlib.resources.files(self.resource_package)
        except (ImportError, TypeError) as exc:
            logger.warning("No bundled patches available from %s: %s", self.resource_package, exc)
            return []
        for part in PATCHES_DIR.split("/"):
            source = source.joinpath(part)
        if not source.is_dir():
            logger.info("No bundled patches in %s", self.resource_package)
            return []

        copied = []
        for entry in sorted(source.iterdir(), key=lambda e: e.name):
            if entry.is_file() and entry.name.endswith(".yml"):
                dest = target / entry.name
                dest.write_bytes(entry.read_bytes())
                copied.append(dest)
                logger.debug("Copied patch %s", entry.name)
        logger.info("Copied %d patch changelog(s) to %s", len(copied), target)
        return copied
