"""
Statement classification.

Turns the counter delta of one statement digest into operation samples of
the closed OperationKind set.
"""

import math
import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, List, Optional

from serverless_cost_calculator.source.models import (
    REGION_SIZE_BYTES,
    OperationKind,
    OperationSample,
    TableStatistics,
)

DEFAULT_SCAN_RATIO_THRESHOLD = 2.0

_WRITE_PATTERN = re.compile(r"^\s*(INSERT|REPLACE|UPDATE)\b", re.IGNORECASE)
_DELETE_PATTERN = re.compile(r"^\s*DELETE\b", re.IGNORECASE)
_READ_PATTERN = re.compile(r"^\s*\(?\s*(SELECT|WITH|TABLE)\b", re.IGNORECASE)

_NAME = r"`?([\w$]+)`?(?:\s*\.\s*`?([\w$]+)`?)?"
_TARGET_PATTERNS = (
    re.compile(
        r"^\s*(?:INSERT|REPLACE)\s+(?:(?:LOW_PRIORITY|DELAYED|HIGH_PRIORITY|IGNORE)\s+)*(?:INTO\s+)?" + _NAME,
        re.IGNORECASE,
    ),
    re.compile(r"^\s*UPDATE\s+(?:(?:LOW_PRIORITY|IGNORE)\s+)*" + _NAME, re.IGNORECASE),
    re.compile(
        r"^\s*DELETE\s+(?:(?:LOW_PRIORITY|QUICK|IGNORE)\s+)*FROM\s+" + _NAME, re.IGNORECASE
    ),
)


class StatementCategory(Enum):
    """Coarse statement category derived from digest text."""
    READ = auto()
    WRITE = auto()
    DELETE = auto()
    IGNORED = auto()  # DDL, SET, SHOW, transaction control


# TiDB statement summary STMT_TYPE values
_STATEMENT_TYPES = {
    "select": StatementCategory.READ,
    "union": StatementCategory.READ,
    "with": StatementCategory.READ,
    "table": StatementCategory.READ,
    "insert": StatementCategory.WRITE,
    "replace": StatementCategory.WRITE,
    "update": StatementCategory.WRITE,
    "delete": StatementCategory.DELETE,
}


@dataclass(frozen=True)
class DigestDelta:
    """Counter growth of one statement digest between two snapshots."""
    digest_text: str
    executions: int
    rows_affected: int
    rows_sent: int
    rows_examined: int
    statement_type: Optional[str] = None
    write_bytes: Optional[int] = None  # Bytes written, when the server reports them


def classify_statement(digest_text: str, statement_type: Optional[str] = None) -> StatementCategory:
    if statement_type:
        return _STATEMENT_TYPES.get(statement_type.strip().lower(), StatementCategory.IGNORED)
    if _DELETE_PATTERN.match(digest_text):
        return StatementCategory.DELETE
    if _WRITE_PATTERN.match(digest_text):
        return StatementCategory.WRITE
    if _READ_PATTERN.match(digest_text):
        return StatementCategory.READ
    return StatementCategory.IGNORED


def classify_read(
    rows_examined: int,
    rows_sent: int,
    executions: int,
    scan_ratio_threshold: float = DEFAULT_SCAN_RATIO_THRESHOLD
) -> OperationKind:
    """Point read or range scan.

    A read is a range scan when it examines many more rows than it returns
    (scan ratio above the threshold) or returns more than one row per
    execution.
    """
    scan_ratio = rows_examined / max(rows_sent, 1)
    if scan_ratio > scan_ratio_threshold or rows_sent > max(executions, 1):
        return OperationKind.RANGE_SCAN
    return OperationKind.POINT_READ


def parse_target_table(digest_text: str) -> Optional[str]:
    """Table written by an INSERT, REPLACE, UPDATE or DELETE digest."""
    for pattern in _TARGET_PATTERNS:
        match = pattern.match(digest_text)
        if match:
            return match.group(2) or match.group(1)
    return None


def samples_for_statement(
    delta: DigestDelta,
    bucket: int,
    tables: Dict[str, TableStatistics],
    default_row_bytes: int,
    scan_ratio_threshold: float = DEFAULT_SCAN_RATIO_THRESHOLD
) -> List[OperationSample]:
    """Operation samples implied by one digest delta.

    Args:
        delta: Counter growth of the digest within the bucket
        bucket: Timestamp bucket the delta belongs to
        tables: Schema statistics keyed by table name
        default_row_bytes: Row size used when the target table is unknown
        scan_ratio_threshold: Scan ratio above which reads are range scans

    Returns:
        Samples for the statement; empty for ignored statements or idle digests
    """
    if delta.executions <= 0:
        return []

    category = classify_statement(delta.digest_text, delta.statement_type)
    if category == StatementCategory.IGNORED:
        return []

    if category == StatementCategory.READ:
        kind = classify_read(
            delta.rows_examined, delta.rows_sent, delta.executions, scan_ratio_threshold
        )
        read_bytes = delta.rows_examined * default_row_bytes
        operations = delta.executions
        if kind == OperationKind.RANGE_SCAN:
            # One request per storage region a scan touches
            bytes_per_execution = read_bytes / delta.executions
            operations *= max(1, math.ceil(bytes_per_execution / REGION_SIZE_BYTES))
        return [OperationSample(
            kind=kind,
            operations=operations,
            rows_affected=delta.rows_examined,
            bytes_transferred=read_bytes,
            bucket=bucket,
        )]

    table_name = parse_target_table(delta.digest_text)
    table = tables.get(table_name) if table_name else None
    row_bytes = table.row_bytes if table else default_row_bytes
    kind = OperationKind.DELETE if category == StatementCategory.DELETE else OperationKind.ROW_WRITE
    if delta.write_bytes is not None:
        written = delta.write_bytes
    else:
        written = delta.rows_affected * row_bytes

    samples = [OperationSample(
        kind=kind,
        operations=delta.executions,
        rows_affected=delta.rows_affected,
        bytes_transferred=written,
        bucket=bucket,
        table=table_name,
    )]
    if kind == OperationKind.ROW_WRITE and table is not None:
        for _ in table.secondary_indexes:
            samples.append(OperationSample(
                kind=OperationKind.INDEX_WRITE,
                operations=delta.executions,
                rows_affected=delta.rows_affected,
                bytes_transferred=delta.rows_affected * table.index_entry_bytes,
                bucket=bucket,
                table=table_name,
            ))
    return samples
