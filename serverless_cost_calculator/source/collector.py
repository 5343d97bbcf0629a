"""
Schema statistics collection.

Reads table and index statistics of one schema from the source database's
metadata views. Read-only; nothing on the source is modified.
"""

import re
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pymysql
from loguru import logger

from serverless_cost_calculator.core.errors import AlreadyServerless, CollectionError
from serverless_cost_calculator.core.notes import Note, NoteSeverity, NoteStage
from serverless_cost_calculator.source.models import IndexStatistics, TableStatistics

SUPPORTED_ENGINES = {"innodb"}

SCHEMA_QUERY = "SELECT SCHEMA_NAME FROM information_schema.SCHEMATA WHERE SCHEMA_NAME = %s"

TABLES_QUERY = """
    SELECT TABLE_NAME, ENGINE, TABLE_ROWS, AVG_ROW_LENGTH, DATA_LENGTH, INDEX_LENGTH
    FROM information_schema.TABLES
    WHERE TABLE_SCHEMA = %s AND TABLE_TYPE = 'BASE TABLE'
    ORDER BY TABLE_NAME
"""

INDEXES_QUERY = """
    SELECT INDEX_NAME, COLUMN_NAME, CARDINALITY
    FROM information_schema.STATISTICS
    WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
    ORDER BY INDEX_NAME, SEQ_IN_INDEX
"""

VERSION_QUERY = "SELECT VERSION()"

_TIDB_SERVERLESS = re.compile(r"^\d+\.\d+\.\d+-(?i:TiDB)-v\d+\.\d+\.\d+-(?i:serverless)")
_TIDB = re.compile(r"^\d+\.\d+\.\d+-(?i:TiDB)-")
_MARIADB = re.compile(r"^\d+\.\d+\.\d+-(?i:MariaDB)")


class ServerFlavor(Enum):
    """Kind of MySQL-compatible server the source runs on."""
    MYSQL = "mysql"
    MARIADB = "mariadb"
    TIDB = "tidb"
    TIDB_SERVERLESS = "tidb_serverless"


def parse_server_flavor(version: str) -> ServerFlavor:
    if _TIDB_SERVERLESS.match(version):
        return ServerFlavor.TIDB_SERVERLESS
    if _TIDB.match(version):
        return ServerFlavor.TIDB
    if _MARIADB.match(version):
        return ServerFlavor.MARIADB
    return ServerFlavor.MYSQL


def detect_server(connection: Any, schema: str = "") -> ServerFlavor:
    """Identify the source server from its version string.

    Raises:
        AlreadyServerless: If the source already runs on the serverless target
        CollectionError: If the version cannot be read
    """
    try:
        with connection.cursor() as cursor:
            cursor.execute(VERSION_QUERY)
            row = cursor.fetchone()
    except pymysql.MySQLError as e:
        raise CollectionError("Failed to read the server version", schema, e)

    version = str(row[0]) if row else ""
    flavor = parse_server_flavor(version)
    logger.info(f"Source server version '{version}' ({flavor.value})")
    if flavor == ServerFlavor.TIDB_SERVERLESS:
        raise AlreadyServerless(version)
    return flavor


class StatisticsCollector:
    """Collects TableStatistics for every base table of a schema.

    Per-table index queries may fan out over a thread pool when a connection
    factory is supplied; each worker then uses its own connection. Output is
    always ordered by table name.
    """

    def __init__(
        self,
        connection: Any,
        connection_factory: Optional[Callable[[], Any]] = None,
        max_workers: int = 4
    ):
        """Initialize the collector.

        Args:
            connection: Open DB-API connection to the source database
            connection_factory: Optional callable opening extra connections for fan-out
            max_workers: Maximum concurrent index queries
        """
        self.connection = connection
        self.connection_factory = connection_factory
        self.max_workers = max_workers

    def collect(self, schema: str) -> List[TableStatistics]:
        """Collect statistics for every table in the schema.

        Args:
            schema: Target schema name

        Returns:
            Table statistics sorted by table name

        Raises:
            CollectionError: If the schema doesn't exist or a metadata query fails
        """
        try:
            with self.connection.cursor() as cursor:
                cursor.execute(SCHEMA_QUERY, (schema,))
                if cursor.fetchone() is None:
                    raise CollectionError("Schema does not exist or is not visible to this user", schema)

                cursor.execute(TABLES_QUERY, (schema,))
                table_rows = cursor.fetchall()
        except pymysql.MySQLError as e:
            raise CollectionError("Failed to read table statistics", schema, e)

        names = [row[0] for row in table_rows]
        logger.info(f"Found {len(names)} table(s) in schema '{schema}'")
        indexes = self._collect_indexes(schema, names)

        tables = [
            TableStatistics(
                name=name,
                engine=engine,
                row_count=_as_int(rows),
                avg_row_length=_as_int(avg_row_length),
                data_bytes=_as_int(data_length),
                index_bytes=_as_int(index_length),
                indexes=indexes[name],
            )
            for name, engine, rows, avg_row_length, data_length, index_length in table_rows
        ]
        return sorted(tables, key=lambda table: table.name)

    def _collect_indexes(self, schema: str, names: List[str]) -> Dict[str, Tuple[IndexStatistics, ...]]:
        if self.connection_factory is None or self.max_workers < 2 or len(names) < 2:
            return {name: self._query_indexes(self.connection, schema, name) for name in names}

        # One connection per worker thread, opened on its first table
        local = threading.local()
        opened: List[Any] = []
        lock = threading.Lock()

        def query(table: str) -> Tuple[IndexStatistics, ...]:
            connection = getattr(local, "connection", None)
            if connection is None:
                try:
                    connection = self.connection_factory()
                except pymysql.MySQLError as e:
                    raise CollectionError(f"Failed to open a connection for table '{table}'", schema, e)
                local.connection = connection
                with lock:
                    opened.append(connection)
            return self._query_indexes(connection, schema, table)

        results: Dict[str, Tuple[IndexStatistics, ...]] = {}
        try:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(names))) as pool:
                futures = {pool.submit(query, name): name for name in names}
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
        finally:
            for connection in opened:
                connection.close()
        logger.debug(f"Read indexes of {len(names)} table(s) over {len(opened)} connection(s)")
        return results

    @staticmethod
    def _query_indexes(connection: Any, schema: str, table: str) -> Tuple[IndexStatistics, ...]:
        try:
            with connection.cursor() as cursor:
                cursor.execute(INDEXES_QUERY, (schema, table))
                rows = cursor.fetchall()
        except pymysql.MySQLError as e:
            raise CollectionError(f"Failed to read indexes of table '{table}'", schema, e)

        columns: Dict[str, List[str]] = {}
        cardinality: Dict[str, Optional[int]] = {}
        for index_name, column_name, index_cardinality in rows:
            columns.setdefault(index_name, []).append(column_name)
            # Cardinality of the last column covers the whole index
            if index_cardinality is not None:
                cardinality[index_name] = int(index_cardinality)

        logger.debug(f"Table '{table}' has {len(columns)} index(es)")
        return tuple(
            IndexStatistics(name=name, columns=tuple(cols), cardinality=cardinality.get(name))
            for name, cols in columns.items()
        )


def collection_notes(tables: Sequence[TableStatistics], schema: str) -> List[Note]:
    """Caveats about the collected statistics, in a fixed order."""
    if not tables:
        return [Note(
            stage=NoteStage.COLLECTOR,
            severity=NoteSeverity.LOW_CONFIDENCE,
            message=(
                f"Schema '{schema}' contains no tables; there is no data or workload to "
                f"estimate, so the cost is zero."
            ),
        )]

    notes = []
    by_engine: Dict[str, List[str]] = {}
    for table in tables:
        if table.engine and table.engine.lower() not in SUPPORTED_ENGINES:
            by_engine.setdefault(table.engine, []).append(table.name)
    for engine, names in sorted(by_engine.items()):
        notes.append(Note(
            stage=NoteStage.COLLECTOR,
            severity=NoteSeverity.WARNING,
            message=(
                f"Unsupported storage engine {engine} for table(s) {', '.join(names)}; the "
                f"serverless target stores them as transactional row data, so their size and "
                f"request units may differ from the estimate."
            ),
        ))

    stale = [table.name for table in tables if table.row_count == 0 and table.data_bytes > 0]
    if stale:
        notes.append(Note(
            stage=NoteStage.COLLECTOR,
            severity=NoteSeverity.INFO,
            message=(
                f"Statistics for table(s) {', '.join(stale)} report no rows although they hold "
                f"data; run ANALYZE TABLE on the source to refresh them before estimating."
            ),
        ))
    return notes


def _as_int(value: Any) -> int:
    return int(value) if value is not None else 0
