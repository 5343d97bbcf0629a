"""
Database connection management.

Provides read-only PyMySQL connections to the source database.
"""

from typing import Callable

import pymysql
from loguru import logger

from serverless_cost_calculator.config.loader import SourceConfig

DEFAULT_CONNECT_TIMEOUT = 10


def get_connection(config: SourceConfig, connect_timeout: int = DEFAULT_CONNECT_TIMEOUT) -> pymysql.connections.Connection:
    """Open a connection to the source database in read-only autocommit mode.

    Args:
        config: Source connection parameters
        connect_timeout: Seconds to wait for the server handshake

    Returns:
        Open PyMySQL connection
    """
    logger.debug(f"Connecting to {config.host}:{config.port} as '{config.user}'")
    conn = pymysql.connect(
        host=config.host,
        port=config.port,
        user=config.user,
        password=config.password,
        database=config.database,
        connect_timeout=connect_timeout,
        autocommit=True,
        charset="utf8mb4",
    )
    with conn.cursor() as cursor:
        cursor.execute("SET SESSION TRANSACTION READ ONLY")
    return conn


def connection_factory(config: SourceConfig) -> Callable[[], pymysql.connections.Connection]:
    """Zero-argument callable opening a fresh connection per call."""
    def _connect() -> pymysql.connections.Connection:
        return get_connection(config)
    return _connect
