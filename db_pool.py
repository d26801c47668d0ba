"""SQLite connection pool shared by the event loop's worker threads."""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from queue import Empty, Queue
from typing import Generator, List

logger = logging.getLogger(__name__)


class SQLiteConnectionPool:
    """Thread-safe SQLite connection pool.

    Storage calls are dispatched with ``asyncio.to_thread`` so a connection
    may be checked out by a different worker thread each time; connections
    are therefore opened with ``check_same_thread=False`` and only ever used
    by one borrower at a time.
    """

    def __init__(self, database: str, max_connections: int = 5, busy_timeout: float = 5.0):
        self.database = database
        self.max_connections = max_connections
        self.busy_timeout = busy_timeout
        self._pool: Queue[sqlite3.Connection] = Queue(maxsize=max_connections)
        self._lock = threading.Lock()
        self._created: List[sqlite3.Connection] = []

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.database, timeout=self.busy_timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @property
    def size(self) -> int:
        return len(self._created)

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection, creating one while under ``max_connections``."""
        connection = None
        try:
            connection = self._pool.get(block=False)
        except Empty:
            with self._lock:
                if len(self._created) < self.max_connections:
                    connection = self._create_connection()
                    self._created.append(connection)
                    logger.debug("Opened pooled connection %d/%d for %s",
                                 len(self._created), self.max_connections, self.database)
            if connection is None:
                connection = self._pool.get(block=True)

        try:
            yield connection
        finally:
            try:
                connection.rollback()
                self._pool.put(connection)
            except sqlite3.Error as e:
                logger.error("Error returning connection to pool: %s", e)
                self._discard(connection)

    def _discard(self, connection: sqlite3.Connection) -> None:
        with self._lock:
            if connection in self._created:
                self._created.remove(connection)
        try:
            connection.close()
        except sqlite3.Error:
            logger.debug("Closing discarded connection failed", exc_info=True)

    def close_all(self) -> None:
        """Close every idle connection and forget the ones still borrowed."""
        while True:
            try:
                connection = self._pool.get(block=False)
            except Empty:
                break
            self._discard(connection)
        with self._lock:
            self._created.clear()
