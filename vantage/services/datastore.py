"""DuckDB connection ownership and source-table materialisation."""

from __future__ import annotations

import glob as _glob
import logging
import os
from typing import Any, List, Mapping, Optional

import duckdb
import pandas as pd

logger = logging.getLogger("vantage")


class DataStore:
    """Own the embedded DuckDB database the dashboards query.

    Storage backend: DuckDB (``DUCKDB_PATH``, ``:memory:`` allowed)
    - Source data: CSV files per table, from ``CSV_SOURCES`` (table -> glob)
    """

    def __init__(self, config: Mapping[str, Any]):
        self.config = config
        self._con: Optional[duckdb.DuckDBPyConnection] = None

    # ---------- DuckDB helpers ----------

    def _connect(self) -> duckdb.DuckDBPyConnection:
        if self._con is None:
            db_path = str(self.config.get("DUCKDB_PATH") or ":memory:")
            if db_path != ":memory:" and os.path.dirname(db_path):
                os.makedirs(os.path.dirname(db_path), exist_ok=True)
            self._con = duckdb.connect(db_path)
            logger.info("Opened DuckDB database %s", db_path)
        return self._con

    def cursor(self) -> duckdb.DuckDBPyConnection:
        """A new cursor; each concurrently running query needs its own."""
        return self._connect().cursor()

    def table_exists(self, table: str) -> bool:
        schema, _, name = table.rpartition(".")
        sql = "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = ?"
        params: List[str] = [name]
        if schema:
            sql += " AND table_schema = ?"
            params.append(schema)
        try:
            return bool(self._connect().execute(sql, params).fetchone()[0])
        except duckdb.Error as e:
            logger.warning("Could not check for table %s: %s", table, e)
            return False

    def load_csv(self, table: str, csv_glob: str) -> int:
        """Full rebuild of ``table`` from the CSV files matching ``csv_glob``."""
        con = self._connect()
        files = _glob.glob(csv_glob)
        if not files:
            logger.warning("No CSV files found for glob %s; %s not rebuilt", csv_glob, table)
            return 0

        schema, _, _ = table.rpartition(".")
        if schema:
            con.execute(f"CREATE SCHEMA IF NOT EXISTS {schema};")
        logger.info("Building %s from %d CSV file(s): %s", table, len(files), csv_glob)
        con.execute(f"DROP TABLE IF EXISTS {table};")
        source = csv_glob.replace("'", "''")
        con.execute(f"CREATE TABLE {table} AS SELECT * FROM read_csv_auto('{source}', HEADER=TRUE);")
        con.execute(f"ANALYZE {table};")
        rows = int(con.execute(f"SELECT COUNT(*) FROM {table};").fetchone()[0])
        logger.info("DuckDB table %s rebuilt with %d row(s).", table, rows)
        return rows

    def load_frame(self, table: str, df: pd.DataFrame) -> None:
        """Persist a DataFrame as ``table``, replacing any previous contents."""
        con = self._connect()
        schema, _, _ = table.rpartition(".")
        if schema:
            con.execute(f"CREATE SCHEMA IF NOT EXISTS {schema};")
        con.execute(f"DROP TABLE IF EXISTS {table};")
        con.register("tmp_df", df)
        try:
            con.execute(f"CREATE TABLE {table} AS SELECT * FROM tmp_df;")
        finally:
            con.unregister("tmp_df")
        logger.info("Persisted %d row(s) into DuckDB %s.", len(df), table)

    def load_sources(self) -> None:
        for table, csv_glob in (self.config.get("CSV_SOURCES") or {}).items():
            self.load_csv(table, csv_glob)

    def run_query(self, sql: str, params=None) -> pd.DataFrame:
        """Execute SQL on DuckDB and return as pandas DataFrame."""
        con = self._connect()
        return con.execute(sql, params or []).df()

    def ping(self) -> bool:
        return int(self._connect().execute("SELECT 1;").fetchone()[0]) == 1

    def close(self) -> None:
        if self._con is not None:
            self._con.close()
            self._con = None


__all__ = ["DataStore"]
