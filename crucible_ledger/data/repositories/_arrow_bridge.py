"""Helper Arrow/Polars zero-copy pour DuckDB.

DuckDB .pl() transfère le résultat via un buffer Arrow partagé, sans copie.

Usage dans les repositories :
    from crucible_ledger.data.repositories._arrow_bridge import result_to_polars

    result = conn.execute("SELECT ...")
    df = result_to_polars(result)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import polars as pl

if TYPE_CHECKING:
    import duckdb

logger = logging.getLogger(__name__)


def result_to_polars(
    result: duckdb.DuckDBPyConnection,
    schema: dict[str, pl.DataType] | None = None,
) -> pl.DataFrame:
    """Convertit un résultat DuckDB en DataFrame Polars via Arrow zero-copy.

    Utilise .pl() avec fallback sur fetchall() pour les types non supportés.

    Args:
        result: Résultat d'une requête DuckDB (conn.execute(...)).
        schema: Schéma à appliquer si le résultat est vide.
    """
    columns = [desc[0] for desc in result.description]
    try:
        df = result.pl()
    except (ImportError, TypeError) as e:
        logger.debug(f"Arrow zero-copy échoué, fallback fetchall: {e}")
        rows = result.fetchall()
        df = pl.DataFrame(rows, schema=columns, orient="row") if rows else pl.DataFrame()

    if df.height == 0 and schema is not None:
        return pl.DataFrame(schema=schema)
    if df.width == 0:
        return pl.DataFrame(schema={col: pl.Utf8 for col in columns})
    return df
