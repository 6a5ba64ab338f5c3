"""
Flutterwave Bridge -- Database connection pool

Uses mysql-connector-python with a connection pool for concurrent requests.
Only the transaction record service touches the database, and only when
FLUTTERWAVE_RECORD_TRANSACTIONS is enabled. Webhook hooks run in the
threadpool, so the lazy pool creation is guarded by a lock.
"""

import threading

import mysql.connector
from mysql.connector import pooling
import config

_connection_pool = None
_connection_pool_lock = threading.Lock()


def get_connection_pool():
  """Get or create the MySQL connection pool (lazy, thread-safe init)."""
  global _connection_pool
  if _connection_pool is None:
    with _connection_pool_lock:
      if _connection_pool is None:
        _connection_pool = pooling.MySQLConnectionPool(
          pool_name="fwbridge_pool",
          pool_size=5,
          pool_reset_session=True,
          host=config.MYSQL_HOST,
          port=config.MYSQL_PORT,
          user=config.MYSQL_USER,
          password=config.MYSQL_PASSWORD,
          database=config.MYSQL_DATABASE,
          charset="utf8mb4",
          collation="utf8mb4_unicode_ci",
          autocommit=False,
        )
  return _connection_pool


def get_database_connection():
  """Get a connection from the pool. Caller must close it when done."""
  return get_connection_pool().get_connection()


def execute_query_returning_one_row(query, params=None):
  """Execute a SELECT query and return a single row as dict, or None."""
  connection = get_database_connection()
  try:
    cursor = connection.cursor(dictionary=True)
    cursor.execute(query, params)
    row = cursor.fetchone()
    cursor.close()
    return row
  finally:
    connection.close()


def execute_insert_or_update(query, params=None):
  """Execute an INSERT/UPDATE and commit. Rolls back on failure. Returns lastrowid."""
  connection = get_database_connection()
  try:
    cursor = connection.cursor()
    cursor.execute(query, params)
    connection.commit()
    last_id = cursor.lastrowid
    cursor.close()
    return last_id
  except mysql.connector.Error:
    connection.rollback()
    raise
  finally:
    connection.close()
