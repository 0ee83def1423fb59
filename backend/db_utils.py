#!/usr/bin/env python3
"""
Database Utilities - Unified for Scripts and Backend
Supports both pooled (Flask backend) and non-pooled (scripts) modes

Configuration:
    DATABASE_URL, or DB_HOST / DB_PORT / DB_NAME / DB_USER / DB_PASSWORD
    DB_SSLMODE (default: prefer)
    Set DB_USE_POOLING=true to enable pooling (for Flask)
    Leave unset or false for simple connections (for scripts)
"""

import os
import logging
import time
import threading
from contextlib import contextmanager
from typing import Optional

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

logger = logging.getLogger(__name__)


# ============================================================================
# CONFIGURATION
# ============================================================================

def use_pooling() -> bool:
    return os.environ.get('DB_USE_POOLING', 'false').lower() == 'true'


def get_connection_string() -> str:
    """
    Build the connection string from the environment.

    DATABASE_URL wins when set; otherwise the DB_* variables are combined.
    """
    url = os.environ.get('DATABASE_URL')
    if url:
        return url

    return (
        f"postgresql://{os.environ.get('DB_USER', 'postgres')}:{os.environ.get('DB_PASSWORD', '')}"
        f"@{os.environ.get('DB_HOST', 'localhost')}:{os.environ.get('DB_PORT', '5432')}"
        f"/{os.environ.get('DB_NAME', 'postgres')}"
        f"?sslmode={os.environ.get('DB_SSLMODE', 'prefer')}"
    )


# ============================================================================
# POOLING MODE (Backend) - Only active if DB_USE_POOLING=true
# ============================================================================

pool: Optional[ConnectionPool] = None
keepalive_thread: Optional[threading.Thread] = None
keepalive_stop = threading.Event()
pool_init_lock = threading.Lock()


def init_connection_pool(max_retries=3, retry_delay=2):
    """
    Initialize the connection pool (only used in pooling mode)

    Returns:
        bool: True if successful, False otherwise
    """
    if not use_pooling():
        logger.debug("Pooling not enabled, skipping pool initialization")
        return True

    global pool

    with pool_init_lock:
        if pool is not None:
            logger.debug("Connection pool already initialized")
            return True

        for attempt in range(max_retries):
            try:
                logger.info(f"Initializing connection pool (attempt {attempt + 1}/{max_retries})...")

                pool = ConnectionPool(
                    get_connection_string(),
                    min_size=1,
                    max_size=5,
                    open=True,
                    timeout=30,
                    max_waiting=20,
                    max_lifetime=1800,   # Recycle after 30 minutes
                    max_idle=600,
                    kwargs={
                        'row_factory': dict_row,
                        'connect_timeout': 10,
                        'options': '-c statement_timeout=30000',
                        'autocommit': False,
                        'prepare_threshold': None
                    }
                )

                with pool.connection() as conn:
                    with conn.cursor() as cur:
                        cur.execute("SELECT 1 as test, pg_backend_pid() as pid")
                        result = cur.fetchone()
                        logger.info(f"✓ Connection pool initialized successfully (PID: {result['pid']})")

                return True

            except Exception as e:
                logger.error(f"✗ Connection pool initialization failed (attempt {attempt + 1}/{max_retries}): {e}")

                if pool is not None:
                    try:
                        pool.close()
                    except Exception as close_error:
                        logger.debug(f"Error closing failed pool: {close_error}")
                    pool = None

                if attempt < max_retries - 1:
                    wait_time = retry_delay * (1.5 ** attempt)
                    logger.info(f"Retrying in {wait_time:.1f} seconds...")
                    time.sleep(wait_time)
                else:
                    logger.error("Failed to initialize connection pool after all retries")
                    return False

        return False


def reset_connection_pool():
    """Close and re-create the pool (only used in pooling mode)"""
    if not use_pooling():
        return True

    global pool

    with pool_init_lock:
        logger.warning("Resetting connection pool...")
        if pool is not None:
            try:
                pool.close()
            except Exception as e:
                logger.error(f"Error closing old pool: {e}")
        pool = None

    success = init_connection_pool()
    if success:
        logger.info("✓ Connection pool reset successfully")
    else:
        logger.error("✗ Failed to reset connection pool")
    return success


def connection_keepalive():
    """Background thread body pinging the pool every 5 minutes"""
    logger.info("Starting connection keepalive thread...")

    while not keepalive_stop.wait(300):
        if pool is None:
            continue
        try:
            with pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
            logger.debug(f"Keepalive ping successful, pool stats: {get_pool_stats()}")
        except Exception as e:
            logger.warning(f"Keepalive ping failed: {e}")

    logger.info("Connection keepalive thread stopped")


def start_keepalive_thread():
    """Start the background keepalive thread (only used in pooling mode)"""
    if not use_pooling():
        return

    global keepalive_thread

    if keepalive_thread is None or not keepalive_thread.is_alive():
        keepalive_stop.clear()
        keepalive_thread = threading.Thread(target=connection_keepalive, daemon=True)
        keepalive_thread.start()
        logger.info("Keepalive thread started")


def stop_keepalive_thread():
    """Stop the background keepalive thread (only used in pooling mode)"""
    if not use_pooling():
        return

    keepalive_stop.set()
    if keepalive_thread:
        keepalive_thread.join(timeout=5)
    logger.info("Keepalive thread stopped")


def close_connection_pool():
    """Close the connection pool (only used in pooling mode)"""
    global pool

    with pool_init_lock:
        if pool:
            logger.info("Closing connection pool...")
            try:
                pool.close()
                logger.info("Connection pool closed")
            except Exception as e:
                logger.error(f"Error closing connection pool: {e}")
            pool = None


def get_pool_stats():
    """Get current connection pool statistics (only used in pooling mode)"""
    if not use_pooling() or pool is None:
        return None

    stats = pool.get_stats()
    return {
        'pool_size': stats.get('pool_size', 0),
        'pool_available': stats.get('pool_available', 0),
        'requests_waiting': stats.get('requests_waiting', 0)
    }


# ============================================================================
# SIMPLE MODE (Scripts)
# ============================================================================

def _create_connection():
    """
    Create a simple database connection (only used in simple mode)

    Returns:
        psycopg connection
    """
    try:
        conn = psycopg.connect(
            get_connection_string(),
            row_factory=dict_row,
            autocommit=False,
            prepare_threshold=None
        )
        logger.debug("Simple database connection created")
        return conn
    except psycopg.OperationalError as e:
        logger.error(f"Failed to connect to database: {e}")
        raise


# ============================================================================
# UNIFIED CONNECTION MANAGER
# ============================================================================

@contextmanager
def get_db_connection():
    """
    Get a database connection using the appropriate mode

    Commits on success and rolls back on error in both modes.

    Returns:
        Database connection (context manager)
    """
    if use_pooling():
        if pool is None:
            logger.info("Connection pool not initialized, initializing now...")
            if not init_connection_pool():
                raise RuntimeError("Failed to initialize connection pool")

        try:
            with pool.connection() as conn:
                yield conn
        except psycopg.OperationalError as e:
            logger.error(f"Database operational error: {e}")
            if "server closed the connection unexpectedly" in str(e).lower():
                logger.warning("Detected connection closure, attempting pool reset...")
                reset_connection_pool()
            raise

    else:
        conn = None
        try:
            conn = _create_connection()
            yield conn
            conn.commit()
            logger.debug("Transaction committed successfully")

        except Exception:
            if conn:
                try:
                    conn.rollback()
                    logger.debug("Transaction rolled back due to error")
                except Exception as rollback_error:
                    logger.error(f"Error rolling back transaction: {rollback_error}")
            raise

        finally:
            if conn:
                try:
                    conn.close()
                except Exception as close_error:
                    logger.error(f"Error closing connection: {close_error}")


# ============================================================================
# HELPER FUNCTIONS (Used by both modes)
# ============================================================================

def execute_query(query, params=None, fetch_one=False, fetch_all=True):
    """
    Execute a query with proper error handling

    Args:
        query: SQL query string
        params: Query parameters tuple
        fetch_one: If True, return only first result
        fetch_all: If True, return all results (ignored if fetch_one is True)

    Returns:
        Query results or None
    """
    start_time = time.time()

    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)

                if fetch_one:
                    result = cur.fetchone()
                elif fetch_all:
                    result = cur.fetchall()
                else:
                    result = None

                logger.debug(f"Query executed in {time.time() - start_time:.3f}s")
                return result

    except psycopg.Error as e:
        logger.error(f"Query error after {time.time() - start_time:.3f}s: {e}")
        raise
