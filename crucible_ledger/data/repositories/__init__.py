"""Repositories de lecture (DuckDB → dataclasses / Polars)."""

from crucible_ledger.data.repositories.activity_queries import ActivityQueries

__all__ = ["ActivityQueries"]
