"""Manifest local (référentiel des définitions Destiny 2)."""

from crucible_ledger.data.manifest.store import (
    MANIFEST_SCHEMA_VERSION,
    ManifestStore,
    MedalDefinition,
    ReferenceEntry,
    ReferenceKind,
)

__all__ = [
    "MANIFEST_SCHEMA_VERSION",
    "ManifestStore",
    "MedalDefinition",
    "ReferenceEntry",
    "ReferenceKind",
]
