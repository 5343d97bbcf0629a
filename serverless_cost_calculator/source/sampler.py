"""
Live workload sampling.

Observes the statement digest counters of performance_schema (or, on TiDB,
the cluster statement summary) over a bounded real-time window and
classifies the counter growth into operation samples.
Only counter reads are issued; the window itself is a non-busy wait that can
be cancelled.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import pymysql
from loguru import logger

from serverless_cost_calculator.core.classification import (
    DEFAULT_SCAN_RATIO_THRESHOLD,
    DigestDelta,
    classify_statement,
    StatementCategory,
    samples_for_statement,
)
from serverless_cost_calculator.core.errors import SamplingCancelled, SamplingUnavailable
from serverless_cost_calculator.source.collector import ServerFlavor
from serverless_cost_calculator.source.models import (
    OperationSample,
    TableStatistics,
    WorkloadSummary,
    summarize,
)

PERFORMANCE_SCHEMA_QUERY = "SHOW VARIABLES LIKE 'performance_schema'"

DIGEST_CONSUMER_QUERY = (
    "SELECT ENABLED FROM performance_schema.setup_consumers WHERE NAME = 'statements_digest'"
)

DIGEST_QUERY = """
    SELECT DIGEST, DIGEST_TEXT, COUNT_STAR, SUM_ROWS_AFFECTED, SUM_ROWS_SENT, SUM_ROWS_EXAMINED
    FROM performance_schema.events_statements_summary_by_digest
    WHERE SCHEMA_NAME = %s
"""

TIDB_STMT_SUMMARY_QUERY = "SHOW VARIABLES LIKE 'tidb_enable_stmt_summary'"

# Per-instance rows are folded into one cumulative counter set per digest
TIDB_DIGEST_QUERY = """
    SELECT DIGEST, DIGEST_TEXT, STMT_TYPE,
        CAST(SUM(EXEC_COUNT) AS UNSIGNED),
        CAST(SUM(EXEC_COUNT * AVG_AFFECTED_ROWS) AS UNSIGNED),
        CAST(SUM(EXEC_COUNT * AVG_RESULT_ROWS) AS UNSIGNED),
        CAST(SUM(EXEC_COUNT * AVG_PROCESSED_KEYS) AS UNSIGNED),
        CAST(SUM(EXEC_COUNT * AVG_WRITE_SIZE) AS UNSIGNED)
    FROM information_schema.CLUSTER_STATEMENTS_SUMMARY
    WHERE SCHEMA_NAME = %s
    GROUP BY DIGEST, DIGEST_TEXT, STMT_TYPE
"""

MYSQL_GUIDE = "https://dev.mysql.com/doc/refman/8.0/en/performance-schema-startup-configuration.html"
MARIADB_GUIDE = "https://mariadb.com/kb/en/performance-schema-overview/#activating-the-performance-schema"
TIDB_GUIDE = "https://docs.pingcap.com/tidb/stable/statement-summary-tables#parameter-configuration"


@dataclass(frozen=True)
class DigestCounters:
    """Cumulative counters of one statement digest."""
    digest_text: str
    executions: int
    rows_affected: int
    rows_sent: int
    rows_examined: int
    statement_type: Optional[str] = None
    write_bytes: Optional[int] = None


def diff_snapshots(
    previous: Dict[str, DigestCounters],
    current: Dict[str, DigestCounters]
) -> List[DigestDelta]:
    """Counter growth between two snapshots, ordered by digest.

    A digest whose counters went backwards was reset in between; its current
    value is taken as the growth.
    """
    deltas = []
    for digest in sorted(current):
        after = current[digest]
        before = previous.get(digest)
        if before is None or after.executions < before.executions:
            before = DigestCounters(after.digest_text, 0, 0, 0, 0, write_bytes=0)
        write_bytes = None
        if after.write_bytes is not None:
            write_bytes = max(after.write_bytes - (before.write_bytes or 0), 0)
        delta = DigestDelta(
            digest_text=after.digest_text,
            executions=after.executions - before.executions,
            rows_affected=max(after.rows_affected - before.rows_affected, 0),
            rows_sent=max(after.rows_sent - before.rows_sent, 0),
            rows_examined=max(after.rows_examined - before.rows_examined, 0),
            statement_type=after.statement_type,
            write_bytes=write_bytes,
        )
        if delta.executions > 0:
            deltas.append(delta)
    return deltas


class WorkloadSampler:
    """Samples live statement activity of one schema."""

    def __init__(
        self,
        connection: Any,
        flavor: ServerFlavor = ServerFlavor.MYSQL,
        bucket_seconds: float = 10.0,
        scan_ratio_threshold: float = DEFAULT_SCAN_RATIO_THRESHOLD,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        sleeper: Optional[Callable[[float], bool]] = None
    ):
        """Initialize the sampler.

        Args:
            connection: Open DB-API connection to the source database
            flavor: Detected server flavor; selects the counter source and guidance
            bucket_seconds: Length of one timestamp bucket
            scan_ratio_threshold: Scan ratio above which reads are range scans
            cancel_event: Event that interrupts the sampling window when set
            clock: Monotonic clock in seconds
            sleeper: Waits up to the given seconds; returns True when cancelled
        """
        self.connection = connection
        self.flavor = flavor
        self.bucket_seconds = bucket_seconds
        self.scan_ratio_threshold = scan_ratio_threshold
        self.cancel_event = cancel_event or threading.Event()
        self.clock = clock
        self.sleeper = sleeper or self.cancel_event.wait

    def check_available(self, schema: str) -> None:
        """Verify the statement digest instrumentation can be read.

        Raises:
            SamplingUnavailable: If the instrumentation is disabled or inaccessible
        """
        if self.flavor == ServerFlavor.TIDB:
            self._check_statement_summary(schema)
            return

        guide = MARIADB_GUIDE if self.flavor == ServerFlavor.MARIADB else MYSQL_GUIDE
        try:
            with self.connection.cursor() as cursor:
                cursor.execute(PERFORMANCE_SCHEMA_QUERY)
                row = cursor.fetchone()
                if row is None or str(row[1]).upper() != "ON":
                    raise SamplingUnavailable(
                        f"The Performance Schema is disabled on the source server; enable it to "
                        f"sample the live workload. For instructions, see {guide}",
                        schema,
                    )
                cursor.execute(DIGEST_CONSUMER_QUERY)
                row = cursor.fetchone()
                if row is None or str(row[0]).upper() != "YES":
                    raise SamplingUnavailable(
                        "The 'statements_digest' Performance Schema consumer is disabled; enable "
                        f"it to sample the live workload. For instructions, see {guide}",
                        schema,
                    )
        except pymysql.MySQLError as e:
            raise SamplingUnavailable("Cannot access the Performance Schema", schema, e)

    def _check_statement_summary(self, schema: str) -> None:
        try:
            with self.connection.cursor() as cursor:
                cursor.execute(TIDB_STMT_SUMMARY_QUERY)
                row = cursor.fetchone()
        except pymysql.MySQLError as e:
            raise SamplingUnavailable("Cannot access the statement summary tables", schema, e)
        if row is None or str(row[1]).upper() not in ("ON", "1"):
            raise SamplingUnavailable(
                "The statement summary tables are disabled on the source cluster; set "
                "'tidb_enable_stmt_summary' to ON to sample the live workload. For instructions, "
                f"see {TIDB_GUIDE}",
                schema,
            )

    def snapshot(self, schema: str) -> Dict[str, DigestCounters]:
        """Read the cumulative digest counters of the schema.

        TiDB sources are read from the cluster statement summary, which also
        reports the statement type and the bytes written.

        Raises:
            SamplingUnavailable: If the counters cannot be read
        """
        query = TIDB_DIGEST_QUERY if self.flavor == ServerFlavor.TIDB else DIGEST_QUERY
        try:
            with self.connection.cursor() as cursor:
                cursor.execute(query, (schema,))
                rows = cursor.fetchall()
        except pymysql.MySQLError as e:
            raise SamplingUnavailable("Failed to read statement counters", schema, e)

        if self.flavor == ServerFlavor.TIDB:
            return _statement_summary_counters(rows)

        counters = {}
        for digest, text, count, affected, sent, examined in rows:
            text = text or ""
            counters[digest or text] = DigestCounters(
                digest_text=text,
                executions=int(count or 0),
                rows_affected=int(affected or 0),
                rows_sent=int(sent or 0),
                rows_examined=int(examined or 0),
            )
        return counters

    def sample(
        self,
        schema: str,
        tables: Sequence[TableStatistics],
        duration_seconds: float
    ) -> WorkloadSummary:
        """Observe the schema's workload for a real-time window.

        Counters are read at the start and at every bucket boundary until the
        window closes; each bucket's growth becomes operation samples.

        Args:
            schema: Target schema name
            tables: Collected statistics, used for row and index sizes
            duration_seconds: Length of the sampling window

        Returns:
            WorkloadSummary of the closed window

        Raises:
            SamplingUnavailable: If the instrumentation is unavailable or fails mid-window
            SamplingCancelled: If the window is interrupted before it closes
        """
        self.check_available(schema)

        tables_by_name = {table.name: table for table in tables}
        row_bytes = _average_row_bytes(tables)
        samples: List[OperationSample] = []
        egress: Dict[int, int] = {}

        started = self.clock()
        deadline = started + duration_seconds
        previous = self.snapshot(schema)
        logger.info(f"Sampling workload of '{schema}' for {duration_seconds:.0f}s")

        bucket = 0
        while True:
            remaining = deadline - self.clock()
            if remaining <= 0:
                break
            self._wait(min(self.bucket_seconds, remaining), schema)
            current = self.snapshot(schema)
            for delta in diff_snapshots(previous, current):
                samples.extend(samples_for_statement(
                    delta, bucket, tables_by_name, row_bytes, self.scan_ratio_threshold
                ))
                category = classify_statement(delta.digest_text, delta.statement_type)
                if category == StatementCategory.READ and delta.rows_sent:
                    egress[bucket] = egress.get(bucket, 0) + delta.rows_sent * row_bytes
            logger.debug(f"Bucket {bucket}: {len(samples)} sample(s) so far")
            previous = current
            bucket += 1

        elapsed = self.clock() - started
        return summarize(
            samples, elapsed if elapsed > 0 else duration_seconds, egress, bucket_count=bucket
        )

    def _wait(self, seconds: float, schema: str) -> None:
        try:
            cancelled = self.sleeper(seconds)
        except KeyboardInterrupt:
            cancelled = True
        if cancelled:
            logger.warning("Sampling window interrupted; discarding the partial window")
            raise SamplingCancelled(
                "The sampling window was interrupted before it closed, so no workload was recorded",
                schema,
            )


def _statement_summary_counters(rows) -> Dict[str, DigestCounters]:
    counters = {}
    for digest, text, statement_type, count, affected, sent, processed, written in rows:
        text = text or ""
        counters[digest or text] = DigestCounters(
            digest_text=text,
            executions=int(count or 0),
            rows_affected=int(affected or 0),
            rows_sent=int(sent or 0),
            rows_examined=int(processed or 0),
            statement_type=statement_type or None,
            write_bytes=int(written or 0),
        )
    return counters


def _average_row_bytes(tables: Sequence[TableStatistics]) -> int:
    total_rows = sum(table.row_count for table in tables)
    total_data = sum(table.data_bytes for table in tables)
    return total_data // max(total_rows, 1)
