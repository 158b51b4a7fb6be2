"""
DentalFlow migration system

Forward-only schema migrations for the clinic database.

Key Features:
- Schema version tracked as last_migration_version in app_meta
- One transaction per migration, version stamped in the same transaction
- Shadow-and-swap steps for destructive reshapes, legacy tables retained
- Pre-migration snapshot of existing databases
- Migration history in the _migrations table
"""

from .migration_base import MigrationBase, ShadowSwap, apply_shadow_swaps
from .registry import MigrationRegistry
from .runner import MigrationRunner, MigrationReport

__all__ = [
    "MigrationBase",
    "ShadowSwap",
    "apply_shadow_swaps",
    "MigrationRegistry",
    "MigrationRunner",
    "MigrationReport",
]
