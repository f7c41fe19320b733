"""Discover generated entity classes and inventory their mapping metadata."""

from __future__ import annotations

import dataclasses
import importlib
import inspect
import logging
import pkgutil
from typing import Iterable, Optional

from entitygen import mapping
from entitygen.graph import DependencyGraph, SchemaGenerationError

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class RegisteredType:
    name: str  # class name, the key references use
    cls: type
    info: mapping.EntityInfo

    @property
    def table(self) -> Optional[str]:
        return self.info.table


class EntityRegistry:
    """Entities and embeddables found by one scan, keyed by class name."""

    def __init__(self) -> None:
        self.entities: dict[str, RegisteredType] = {}
        self.embeddables: dict[str, RegisteredType] = {}

    @classmethod
    def from_classes(cls, classes: Iterable[type]) -> "EntityRegistry":
        registry = cls()
        for c in classes:
            registry.register(c)
        return registry

    def register(self, c: type) -> bool:
        info = mapping.entity_info(c)
        if info is None:
            return False
        entry = RegisteredType(c.__name__, c, info)
        if info.kind == mapping.EMBEDDABLE:
            self.embeddables[entry.name] = entry
            return True
        if info.identity is None:
            logger.warning("Skipping entity %s.%s: no identity column", c.__module__, c.__name__)
            return False
        existing = self.entities.get(entry.name)
        if existing is not None and existing.cls is not c:
            logger.warning(
                "Entity name %s registered twice (%s, %s); keeping the latter",
                entry.name,
                existing.cls.__module__,
                c.__module__,
            )
        self.entities[entry.name] = entry
        return True

    def __len__(self) -> int:
        return len(self.entities)

    def __contains__(self, name: str) -> bool:
        return name in self.entities

    def entity(self, name: str) -> RegisteredType:
        try:
            return self.entities[name]
        except KeyError:
            raise SchemaGenerationError(f"Unknown entity {name!r}") from None

    def embeddable(self, name: str) -> RegisteredType:
        try:
            return self.embeddables[name]
        except KeyError:
            raise SchemaGenerationError(f"Unknown embeddable {name!r}") from None

    def dependency_graph(self) -> DependencyGraph:
        graph = DependencyGraph(self.entities)
        for name, entry in self.entities.items():
            for ref in entry.info.references:
                if ref.target not in self.entities:
                    raise SchemaGenerationError(
                        f"{name}.{ref.name} references {ref.target}, which is not a registered entity"
                    )
                graph.add_edge(name, ref.target)
        return graph

    def creation_order(self) -> list[RegisteredType]:
        """Entities ordered so every referenced table precedes its dependents."""
        return [self.entities[name] for name in self.dependency_graph().topological_order()]


def _iter_modules(base_package: str):
    package = importlib.import_module(base_package)
    yield package
    path = getattr(package, "__path__", None)
    if path is None:
        return
    for info in pkgutil.walk_packages(path, prefix=base_package + "."):
        yield importlib.import_module(info.name)


def scan_package(base_package: str) -> EntityRegistry:
    """Import every module under ``base_package`` and register its entity classes."""
    registry = EntityRegistry()
    for module in _iter_modules(base_package):
        for _, member in inspect.getmembers(module, inspect.isclass):
            # Classes imported into the module are registered where they are defined.
            if member.__module__ != module.__name__:
                continue
            registry.register(member)
    logger.info(
        "Found %d entities and %d embeddables in %s",
        len(registry.entities),
        len(registry.embeddables),
        base_package,
    )
    return registry
