"""
End-to-end tests for the estimation engine over a fake source database.
"""
import threading
from decimal import Decimal

import pymysql
import pytest

from serverless_cost_calculator.config.loader import EstimatorSettings
from serverless_cost_calculator.core.engine import EstimateRequest, estimate_cost
from serverless_cost_calculator.core.errors import AlreadyServerless, CollectionError, InvalidRegion
from serverless_cost_calculator.core.notes import NoteSeverity, NoteStage
from serverless_cost_calculator.core.request_units import SECONDS_PER_MONTH

GIB = 1024 ** 3

# 10 GB data, 2 GB index, 100 byte rows
ORDERS_ROW = ("orders", "InnoDB", 107_374_182, 100, 10 * GIB, 2 * GIB)
ORDERS_INDEXES = {"orders": [("PRIMARY", "id", 107_374_182)]}

POINT_SELECT = "SELECT * FROM `orders` WHERE `id` = ?"
INSERT = "INSERT INTO `orders` VALUES (...)"


# Cumulative counters of 1,000 reads and 50 writes spread over six 10s buckets
STEADY_READS = [0, 167, 334, 501, 668, 834, 1000]
STEADY_WRITES = [0, 9, 18, 26, 34, 42, 50]


def digest_rows(reads, writes):
    return [
        ("d1", POINT_SELECT, reads, 0, reads, reads),
        ("d2", INSERT, writes, writes, 0, 0),
    ]


def sampling_responses(snapshots):
    snapshots = iter(snapshots)
    return {
        "SHOW VARIABLES": [("performance_schema", "ON")],
        "setup_consumers": [("YES",)],
        "events_statements_summary_by_digest": lambda params: next(snapshots),
    }


class TestEstimateCost:
    """Test the pipeline end to end."""

    def test_empty_schema(self, make_connection, catalog):
        """Zero tables without sampling cost nothing and carry one note."""
        estimate = estimate_cost(make_connection(), EstimateRequest("shop", "us-east-1"), catalog)

        assert estimate.total == Decimal("0")
        assert len(estimate.notes) == 1
        assert "no tables" in estimate.notes[0].message
        assert not estimate.sampled

    def test_static_estimate(self, make_connection, catalog):
        """One 10 GB table with a 2 GB index, sampling disabled."""
        conn = make_connection(tables=[ORDERS_ROW], indexes=ORDERS_INDEXES)
        estimate = estimate_cost(conn, EstimateRequest("shop", "us-east-1"), catalog)

        assert estimate.storage == Decimal("2.40")
        assert estimate.stored_bytes == 12 * GIB
        # 40 region requests * 0.125 + 12 GiB / 64 KiB = 196,613 RU per day
        assert estimate.monthly_request_units == pytest.approx(196_613 * 30)
        assert estimate.request_units.expected == Decimal("0.59")
        assert estimate.total == Decimal("2.99")
        assert estimate.low_confidence
        assert [note.stage for note in estimate.notes] == [NoteStage.REQUEST_UNITS]

    def test_sampled_estimate(self, make_connection, catalog, clock):
        """A 60s window with 1,000 point reads and 50 row writes spread evenly."""
        snapshots = [
            digest_rows(reads, writes)
            for reads, writes in zip(STEADY_READS, STEADY_WRITES)
        ]
        conn = make_connection(
            tables=[ORDERS_ROW], indexes=ORDERS_INDEXES, extra=sampling_responses(snapshots)
        )
        request = EstimateRequest("shop", "us-east-1", analyze=True, sampling_duration=60)

        estimate = estimate_cost(conn, request, catalog, clock=clock, sleeper=clock.sleep)

        reads = 1000 * 0.125 + 100_000 / 65536
        writes = 50 * 3 + 5_000 / 1024 * 3
        egress = 100_000 / 1024
        assert estimate.monthly_request_units == pytest.approx(
            (reads + writes + egress) / 60 * SECONDS_PER_MONTH
        )
        assert estimate.request_units.expected == Decimal("1.68")
        assert not estimate.request_units.is_range
        assert estimate.sampled
        assert estimate.notes == ()
        assert not estimate.low_confidence

    def test_single_burst_reports_range(self, make_connection, catalog, clock):
        """All activity in the first of six buckets is bursty, not steady."""
        snapshots = [digest_rows(0, 0)] + [digest_rows(1000, 50)] * 6
        conn = make_connection(
            tables=[ORDERS_ROW], indexes=ORDERS_INDEXES, extra=sampling_responses(snapshots)
        )
        request = EstimateRequest("shop", "us-east-1", analyze=True, sampling_duration=60)

        estimate = estimate_cost(conn, request, catalog, clock=clock, sleeper=clock.sleep)

        assert estimate.request_units.expected == Decimal("1.68")
        assert estimate.request_units.is_range
        assert estimate.low_confidence
        assert len(estimate.notes) == 1
        assert "bursty" in estimate.notes[0].message
        assert estimate.notes[0].stage == NoteStage.EXTRAPOLATOR

    def test_short_window_reports_range(self, make_connection, catalog, clock):
        """A window below the confidence minimum yields a charge range."""
        snapshots = [digest_rows(0, 0), digest_rows(1000, 50)]
        conn = make_connection(
            tables=[ORDERS_ROW], indexes=ORDERS_INDEXES, extra=sampling_responses(snapshots)
        )
        request = EstimateRequest("shop", "us-east-1", analyze=True, sampling_duration=10)

        estimate = estimate_cost(conn, request, catalog, clock=clock, sleeper=clock.sleep)

        assert estimate.request_units.is_range
        assert estimate.low_confidence
        assert estimate.notes[-1].stage == NoteStage.EXTRAPOLATOR

    def test_invalid_region_before_any_query(self, make_connection, catalog):
        """An unknown region aborts before the source is queried."""
        conn = make_connection(tables=[ORDERS_ROW])
        with pytest.raises(InvalidRegion):
            estimate_cost(conn, EstimateRequest("shop", "mars-north-1"), catalog)
        assert conn.queries == []

    def test_sampling_failure_falls_back(self, make_connection, catalog, clock):
        """A mid-window failure completes on the static path with one note naming the cause."""
        error = pymysql.err.OperationalError(2013, "Lost connection to MySQL server during query")
        conn = make_connection(
            tables=[ORDERS_ROW],
            indexes=ORDERS_INDEXES,
            extra=sampling_responses([digest_rows(0, 0), error]),
        )
        request = EstimateRequest("shop", "us-east-1", analyze=True)

        estimate = estimate_cost(conn, request, catalog, clock=clock, sleeper=clock.sleep)

        naming_cause = [note for note in estimate.notes if "Lost connection" in note.message]
        assert len(naming_cause) == 1
        assert naming_cause[0].stage == NoteStage.SAMPLER
        assert naming_cause[0].severity == NoteSeverity.WARNING
        assert not estimate.sampled
        assert estimate.request_units.expected == Decimal("0.59")
        assert estimate.low_confidence

    def test_cancelled_sampling_falls_back(self, make_connection, catalog, clock):
        """An interrupted window degrades to the static path."""
        cancel = threading.Event()
        cancel.set()
        conn = make_connection(
            tables=[ORDERS_ROW], indexes=ORDERS_INDEXES, extra=sampling_responses([digest_rows(0, 0)])
        )
        request = EstimateRequest("shop", "us-east-1", analyze=True)

        estimate = estimate_cost(conn, request, catalog, cancel_event=cancel, clock=clock)

        assert not estimate.sampled
        assert any("interrupted" in note.message for note in estimate.notes)

    def test_tidb_without_statement_summary_uses_static_path(self, make_connection, catalog):
        """TiDB sources with statement summaries off are estimated from statistics."""
        conn = make_connection(
            tables=[ORDERS_ROW],
            indexes=ORDERS_INDEXES,
            version="8.0.11-TiDB-v7.5.0",
            extra={"tidb_enable_stmt_summary": [("tidb_enable_stmt_summary", "OFF")]},
        )
        estimate = estimate_cost(conn, EstimateRequest("shop", "us-east-1", analyze=True), catalog)

        assert not estimate.sampled
        assert estimate.notes[0].stage == NoteStage.SAMPLER
        assert "tidb_enable_stmt_summary" in estimate.notes[0].message

    def test_tidb_source_is_sampled(self, make_connection, catalog, clock):
        """TiDB sources with statement summaries on are sampled like any other."""
        snapshots = iter([
            [("d1", POINT_SELECT, "Select", reads, 0, reads, reads, 0)]
            for reads in STEADY_READS
        ])
        conn = make_connection(
            tables=[ORDERS_ROW],
            indexes=ORDERS_INDEXES,
            version="8.0.11-TiDB-v7.5.0",
            extra={
                "tidb_enable_stmt_summary": [("tidb_enable_stmt_summary", "ON")],
                "CLUSTER_STATEMENTS_SUMMARY": lambda params: next(snapshots),
            },
        )
        request = EstimateRequest("shop", "us-east-1", analyze=True, sampling_duration=60)

        estimate = estimate_cost(conn, request, catalog, clock=clock, sleeper=clock.sleep)

        assert estimate.sampled
        assert not estimate.request_units.is_range
        assert estimate.notes == ()

    def test_already_serverless(self, make_connection, catalog):
        """A serverless source stops the estimate."""
        conn = make_connection(version="8.0.11-TiDB-v7.1.1-serverless")
        with pytest.raises(AlreadyServerless):
            estimate_cost(conn, EstimateRequest("shop", "us-east-1"), catalog)

    def test_missing_schema_is_fatal(self, make_connection, catalog):
        """A missing schema aborts the run."""
        conn = make_connection(schema_exists=False)
        with pytest.raises(CollectionError):
            estimate_cost(conn, EstimateRequest("shop", "us-east-1"), catalog)

    def test_idempotent(self, make_connection, catalog):
        """The same snapshot and pricing give identical estimates."""
        first = estimate_cost(
            make_connection(tables=[ORDERS_ROW], indexes=ORDERS_INDEXES),
            EstimateRequest("shop", "eu-central-1"),
            catalog,
        )
        second = estimate_cost(
            make_connection(tables=[ORDERS_ROW], indexes=ORDERS_INDEXES),
            EstimateRequest("shop", "eu-central-1"),
            catalog,
        )
        assert first == second
        assert first.region == "eu-central-1"

    def test_settings_change_read_assumption(self, make_connection, catalog):
        """More assumed full scans raise the static charge."""
        conn = make_connection(tables=[ORDERS_ROW], indexes=ORDERS_INDEXES)
        settings = EstimatorSettings(full_scans_per_day=10)
        estimate = estimate_cost(conn, EstimateRequest("shop", "us-east-1"), catalog, settings)
        assert estimate.monthly_request_units == pytest.approx(196_613 * 30 * 10)


class TestEstimateRequest:
    """Test request validation."""

    def test_empty_schema_rejected(self):
        with pytest.raises(ValueError, match="schema is required"):
            EstimateRequest("", "us-east-1")

    def test_non_positive_duration_rejected(self):
        with pytest.raises(ValueError, match="sampling_duration must be > 0"):
            EstimateRequest("shop", "us-east-1", analyze=True, sampling_duration=0)
