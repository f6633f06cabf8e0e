# nlcube/core/duckdb_store.py
"""
Thin adapter over the embedded DuckDB engine.

Everything here is synchronous and may block; callers run it on the shared
worker pool, never on the event loop.
"""
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import duckdb
import pyarrow as pa

# Native order: catalog creation order for tables, ordinal order for columns.
INTROSPECT_SQL = """
    SELECT schema_name, table_name, column_name, data_type, is_nullable
    FROM duckdb_columns()
    WHERE database_name = current_database()
      AND NOT internal
      AND schema_name NOT IN ('information_schema', 'pg_catalog')
    ORDER BY table_oid, column_index
"""

PROBE_SQL = "SELECT 1"


@dataclass(frozen=True)
class ColumnarResult:
    columns: List[str]
    row_count: int
    payload: bytes


def store_path(data_dir: Path, subject: str) -> Path:
    return Path(data_dir) / subject / f"{subject}.duckdb"


def open_connection(path: Path, threads: Optional[int] = None,
                    memory_limit: Optional[str] = None) -> duckdb.DuckDBPyConnection:
    config: Dict[str, Any] = {}
    if threads:
        config["threads"] = threads
    if memory_limit:
        config["memory_limit"] = memory_limit
    return duckdb.connect(str(path), config=config)


def probe(conn: duckdb.DuckDBPyConnection) -> None:
    """Cheap validation; raises if the handle is unusable."""
    row = conn.execute(PROBE_SQL).fetchone()
    if not row or row[0] != 1:
        raise duckdb.Error("validation probe returned an unexpected row")


def close_quietly(conn: duckdb.DuckDBPyConnection) -> Optional[Exception]:
    """Close a handle; returns the close error (if any) so the caller can log it."""
    try:
        conn.close()
    except duckdb.Error as e:
        return e
    return None


def execute(conn: duckdb.DuckDBPyConnection, sql: str) -> pa.Table:
    """
    Run a statement and materialize its full result.

    DuckDB evaluates lazily, so errors raised while rows are produced (failed
    casts, division by zero) only surface here, during the fetch.
    """
    return conn.execute(sql).fetch_arrow_table()


def to_columnar(table: pa.Table) -> ColumnarResult:
    """Encode a materialized result as an Arrow IPC stream."""
    sink = pa.BufferOutputStream()
    with pa.ipc.new_stream(sink, table.schema) as writer:
        writer.write_table(table)
    return ColumnarResult(
        columns=list(table.schema.names),
        row_count=table.num_rows,
        payload=sink.getvalue().to_pybytes(),
    )


def decode_columnar(payload: bytes) -> pa.Table:
    return pa.ipc.open_stream(payload).read_all()


def introspect_schema(conn: duckdb.DuckDBPyConnection) -> List[Tuple[str, List[Tuple[str, str, bool]]]]:
    """
    Returns [(table, [(column, type, nullable), ...]), ...] in native order.
    Tables outside the default `main` schema are reported as schema.table.
    """
    rows = conn.execute(INTROSPECT_SQL).fetchall()
    tables: Dict[str, List[Tuple[str, str, bool]]] = {}
    for schema_name, table_name, column_name, data_type, is_nullable in rows:
        key = table_name if schema_name == "main" else f"{schema_name}.{table_name}"
        tables.setdefault(key, []).append((column_name, str(data_type), bool(is_nullable)))
    return list(tables.items())
