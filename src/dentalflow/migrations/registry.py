"""
Migration Registry

Discovers the migration modules in ``dentalflow.migrations.versions`` and
serves them in version order. Each module defines one ``MigrationBase``
subclass. Versions must run 1..N with no gaps or duplicates.
"""

import importlib
import inspect
import logging
import pkgutil
from typing import Dict, List, Optional

from .migration_base import MigrationBase

logger = logging.getLogger(__name__)


class MigrationRegistry:
    """
    Migration Registry - discovers and orders available migrations

    Example:
        registry = MigrationRegistry()
        for migration in registry.get_pending_migrations(current_version=5):
            print(f"Apply {migration}")
    """

    def __init__(self, versions_package: str = "dentalflow.migrations.versions"):
        self.versions_package = versions_package
        self._migrations: Dict[int, MigrationBase] = {}
        self._discovered = False

    def discover(self) -> None:
        """
        Import every module in the versions package and register the
        migration classes it defines.

        Raises:
            ImportError: If the package or one of its modules fails to import
            ValueError: If the version sequence is invalid
        """
        if self._discovered:
            return

        package = importlib.import_module(self.versions_package)
        for module_info in sorted(pkgutil.iter_modules(package.__path__), key=lambda m: m.name):
            if module_info.name.startswith("_"):
                continue
            module_name = f"{self.versions_package}.{module_info.name}"
            module = importlib.import_module(module_name)

            for name, obj in inspect.getmembers(module, inspect.isclass):
                if (issubclass(obj, MigrationBase) and
                        obj is not MigrationBase and
                        obj.__module__ == module_name):
                    self.register(obj())

        self._validate_sequence()
        self._discovered = True
        logger.debug(f"Discovered {len(self._migrations)} migrations in {self.versions_package}")

    def register(self, migration: MigrationBase) -> None:
        """
        Register a migration instance.

        Raises:
            ValueError: If the version is already registered
        """
        if migration.version in self._migrations:
            existing = self._migrations[migration.version]
            raise ValueError(
                f"Duplicate migration version {migration.version}: "
                f"{migration} conflicts with {existing}"
            )
        self._migrations[migration.version] = migration

    def _validate_sequence(self) -> None:
        if not self._migrations:
            return
        versions = sorted(self._migrations)
        if versions[0] != 1:
            raise ValueError(f"Migration versions must start at 1, found {versions[0]}")
        for expected, version in enumerate(versions, start=1):
            if version != expected:
                raise ValueError(
                    f"Migration version gap detected: expected {expected}, found {version}"
                )

    def _ensure_discovered(self) -> None:
        if not self._discovered:
            self.discover()

    def get_migration(self, version: int) -> Optional[MigrationBase]:
        self._ensure_discovered()
        return self._migrations.get(version)

    def get_all_migrations(self) -> List[MigrationBase]:
        """All registered migrations, ascending by version."""
        self._ensure_discovered()
        return [self._migrations[v] for v in sorted(self._migrations)]

    def get_pending_migrations(self, current_version: int) -> List[MigrationBase]:
        """Migrations with version > current_version, ascending."""
        return [m for m in self.get_all_migrations() if m.version > current_version]

    def get_latest_version(self) -> int:
        self._ensure_discovered()
        return max(self._migrations) if self._migrations else 0

    def mark_discovered(self) -> None:
        """Use only manually registered migrations (tests, tooling)."""
        self._validate_sequence()
        self._discovered = True

    def __repr__(self) -> str:
        return f"<MigrationRegistry: {len(self._migrations)} migrations>"
