"""DuckDB executor for built queries.

the builders never run anything, this is the local stand-in for a store:
handy for the CLI, for tests, and for poking at a report against a file of
sample data. duckdb understands both $n and ? placeholders and the
postgres-flavoured sql the on-page and ads reports emit, so those run
as-is. most of the crm detail sql runs too, but mariadb-only bits like
DATE() are meant for the real crm store.
"""

import asyncio
import time
from typing import Any

import duckdb

from drillforge.models.query import BuiltQuery, QueryResult

# duckdb has no jsonpath. the catalogs only ask one question of page_elements
# ("is there a clicked element whose key mentions cta"), so the stand-in
# answers that one on the json text and ignores the path argument.
POSTGRES_MACROS = [
    r"""
    CREATE OR REPLACE MACRO jsonb_path_exists(target, path) AS
    regexp_matches(
        CAST(target AS VARCHAR),
        '"[^"]*cta[^"]*"\s*:\s*\{[^}]*"clicked"\s*:\s*"?true',
        'i'
    )
    """,
]


class DuckDBExecutor:
    """Execute built queries against DuckDB.

    keeps the duckdb-specific bits isolated. results come back as dicts
    keyed by column name, which is what the aggregator and CLI want.
    """

    def __init__(self, database_path: str | None = None) -> None:
        """Initialize DuckDB connection.

        Args:
            database_path: Path to DuckDB file, or None for in-memory.
        """
        self.database_path = database_path
        self._conn: duckdb.DuckDBPyConnection | None = None  # lazy init

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        """Get or create the DuckDB connection.

        lazy so we don't open a db until we actually need it.
        """
        if self._conn is None:
            self._conn = duckdb.connect(self.database_path or ":memory:")
            for macro in POSTGRES_MACROS:
                self._conn.execute(macro)
        return self._conn

    def execute(self, sql: str, params: list[Any] | None = None) -> QueryResult:
        """Execute sql with positional params and return structured results."""
        params = list(params or [])
        start = time.perf_counter()

        result = self.conn.execute(sql, params)
        columns = [desc[0] for desc in result.description]
        rows = result.fetchall()

        elapsed_ms = (time.perf_counter() - start) * 1000
        data = [dict(zip(columns, row)) for row in rows]

        return QueryResult(
            sql=sql,
            params=params,
            columns=columns,
            data=data,
            row_count=len(data),
            execution_time_ms=round(elapsed_ms, 2),
        )

    def execute_built(self, built: BuiltQuery) -> QueryResult:
        return self.execute(built.query, built.params)

    def fetch_all(self, sql: str, params: list[Any] | None = None) -> list[dict[str, Any]]:
        """Rows as dicts, on a fresh cursor so it's safe off the main thread."""
        cursor = self.conn.cursor()
        try:
            result = cursor.execute(sql, list(params or []))
            columns = [desc[0] for desc in result.description]
            return [dict(zip(columns, row)) for row in result.fetchall()]
        finally:
            cursor.close()

    async def run(self, sql: str, params: list[Any]) -> list[dict[str, Any]]:
        """Async query runner, the shape CampaignPerformanceAggregator expects."""
        return await asyncio.to_thread(self.fetch_all, sql, params)

    def create_table_from_data(
        self, table_name: str, columns: list[str], data: list[tuple[Any, ...]]
    ) -> None:
        """Create a table from in-memory rows.

        columns are full definitions, e.g. "cost DOUBLE". useful for tests
        and sample data.
        """
        if not data:
            raise ValueError("Cannot create table from empty data")

        placeholders = ", ".join(["?"] * len(columns))
        col_defs = ", ".join(columns)

        self.conn.execute(f"CREATE OR REPLACE TABLE {table_name} ({col_defs})")
        self.conn.executemany(f"INSERT INTO {table_name} VALUES ({placeholders})", data)

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists, optionally schema-qualified."""
        schema, _, name = table_name.rpartition(".")
        sql = "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = ?"
        params = [name]
        if schema:
            sql += " AND table_schema = ?"
            params.append(schema)
        return self.conn.execute(sql, params).fetchone()[0] > 0

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "DuckDBExecutor":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
