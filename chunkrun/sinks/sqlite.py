"""SQLite sink - parameterized bulk insert into a relational table.

The insert statement uses one named placeholder per output field, e.g.:

    INSERT INTO people (first_name, last_name) VALUES (:first_name, :last_name)

Identity columns are left to the table definition (INTEGER PRIMARY KEY or
AUTOINCREMENT), so the statement never supplies them.
"""

import logging
import re
import sqlite3
from pathlib import Path
from typing import Optional, Sequence

from chunkrun.errors import PersistenceError, ResourceTimeoutError
from chunkrun.schemas import Record
from chunkrun.sinks.base import RecordSink

logger = logging.getLogger(__name__)

# Named placeholders in the insert statement (:name)
PLACEHOLDER_PATTERN = re.compile(r"(?<!:):([A-Za-z_][A-Za-z0-9_]*)")

_SAVEPOINT = "chunkrun_write"


def _is_lock_error(error: sqlite3.Error) -> bool:
    message = str(error).lower()
    return isinstance(error, sqlite3.OperationalError) and (
        "locked" in message or "busy" in message
    )


def _translate(error: sqlite3.Error, action: str, database: str) -> Exception:
    """Map a sqlite3 error to the chunkrun error taxonomy."""
    if _is_lock_error(error):
        return ResourceTimeoutError(f"{action} timed out on {database}: {error}")
    return PersistenceError(f"{action} failed on {database}: {error}", cause=error)


class SqliteSink(RecordSink):
    """
    Sink that inserts records into a SQLite table.

    The connection runs in autocommit mode so that transaction boundaries
    are issued explicitly (BEGIN/COMMIT/ROLLBACK). Each write runs inside
    a savepoint, so a failed batch leaves nothing behind even inside a
    larger transaction.

    Args:
        database: Path to the SQLite database file (":memory:" allowed)
        sql: Insert statement with named placeholders
        init_sql: Optional DDL script run when the sink is opened
        timeout_s: Seconds to wait on a locked database before raising
            ResourceTimeoutError
    """

    def __init__(
        self,
        database: Path | str,
        sql: str,
        init_sql: Optional[str] = None,
        timeout_s: float = 5.0,
    ):
        if not sql or not sql.strip():
            raise ValueError("sql is required")
        self.database = str(database)
        self.sql = sql
        self.init_sql = init_sql
        self.timeout_s = timeout_s
        self.parameters = tuple(dict.fromkeys(PLACEHOLDER_PATTERN.findall(sql)))
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError(f"Sink not open: {self.database}")
        return self._conn

    def open(self) -> None:
        if self._conn is not None:
            raise RuntimeError(f"Sink already open: {self.database}")
        if self.database != ":memory:":
            Path(self.database).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(self.database, timeout=self.timeout_s, isolation_level=None)
        try:
            if self.init_sql:
                conn.executescript(self.init_sql)
        except sqlite3.Error as e:
            conn.close()
            raise _translate(e, "Schema initialization", self.database) from e
        self._conn = conn
        logger.debug(f"Opened sqlite sink {self.database}")

    def close(self) -> None:
        if self._conn is not None:
            try:
                if self._conn.in_transaction:
                    self._conn.rollback()
            finally:
                self._conn.close()
                self._conn = None

    def begin(self) -> None:
        try:
            self.connection.execute("BEGIN")
        except sqlite3.Error as e:
            raise _translate(e, "BEGIN", self.database) from e

    def commit(self) -> None:
        try:
            self.connection.execute("COMMIT")
        except sqlite3.Error as e:
            raise _translate(e, "COMMIT", self.database) from e

    def rollback(self) -> None:
        if self._conn is not None and self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    def write(self, records: Sequence[Record]) -> int:
        if not records:
            return 0
        rows = [self._bind(record) for record in records]
        conn = self.connection
        try:
            conn.execute(f"SAVEPOINT {_SAVEPOINT}")
        except sqlite3.Error as e:
            raise _translate(e, "Write", self.database) from e
        try:
            conn.executemany(self.sql, rows)
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute(f"ROLLBACK TO {_SAVEPOINT}")
                conn.execute(f"RELEASE {_SAVEPOINT}")
            raise _translate(e, f"Write of {len(rows)} records", self.database) from e
        conn.execute(f"RELEASE {_SAVEPOINT}")
        return len(rows)

    def _bind(self, record: Record) -> dict:
        """Build the named parameter mapping for one record."""
        values = record.as_dict()
        missing = [p for p in self.parameters if p not in values]
        if missing:
            raise PersistenceError(
                f"Record at line {record.line_number} is missing parameters {missing}"
            )
        return {p: values[p] for p in self.parameters}

    def __repr__(self) -> str:
        return f"SqliteSink(database={self.database})"
