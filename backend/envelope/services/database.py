"""Database service for SQLite operations.

The ledger store: one module-level connection, a ``transaction()`` context
manager for atomic writes, and CRUD/query primitives for the ledger tables.
Money columns hold integer cents; conversion to Decimal happens in the
entity layer.
"""

import os
import sqlite3
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, List, Optional

from aws_lambda_powertools import Logger

from envelope.models.errors import Conflict
from envelope.utils import s3

logger = Logger(service="envelope-store")

DEFAULT_DB_KEY = 'ledger.db'

# Every expense contribution to a category: transactions with a direct
# category plus the split rows of expense transactions. Split parents carry
# no category, so nothing is counted twice. Takes budget_id twice.
EXPENSE_LINES = """
    expense_lines AS (
        SELECT t.category_id, t.date, t.amount_cents
        FROM transactions t
        WHERE t.budget_id = ? AND t.type = 'expense' AND t.category_id IS NOT NULL
        UNION ALL
        SELECT s.category_id, t.date, s.amount_cents
        FROM split_transactions s
        JOIN transactions t ON s.transaction_id = t.id
        WHERE t.budget_id = ? AND t.type = 'expense' AND s.category_id IS NOT NULL
    )
"""

_db_connection: Optional[sqlite3.Connection] = None
_db_path: Optional[str] = None
_tx_depth = 0


def get_sql_path(filename: str) -> str:
    """Get path to SQL file shipped next to the package."""
    base_path = Path(__file__).parent.parent.parent / 'sql'
    return str(base_path / filename)


def get_db_key() -> str:
    """S3 object key of the database file."""
    return os.environ.get('LEDGER_DB_KEY', DEFAULT_DB_KEY)


def get_local_path() -> str:
    """Local database path used when S3 persistence is off."""
    return os.environ.get('LEDGER_DB_PATH') or os.path.join(tempfile.gettempdir(), DEFAULT_DB_KEY)


def get_lock_timeout() -> float:
    """Seconds a writer waits for the write lock before giving up."""
    return float(os.environ.get('LEDGER_LOCK_TIMEOUT', '5'))


def init_db(conn: sqlite3.Connection) -> None:
    """Initialize database with schema.

    Args:
        conn: SQLite connection
    """
    with open(get_sql_path('schema.sql'), 'r') as f:
        conn.executescript(f.read())

    run_migrations(conn)


def run_migrations(conn: sqlite3.Connection) -> None:
    """Run database migrations for schema updates.

    Args:
        conn: SQLite connection
    """
    cursor = conn.execute("PRAGMA table_info(transactions)")
    columns = [row[1] for row in cursor.fetchall()]

    # Databases created before collaborator batches were tracked
    if 'batch_id' not in columns:
        conn.execute("ALTER TABLE transactions ADD COLUMN batch_id TEXT")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_batch ON transactions(batch_id)")

    cursor = conn.execute("PRAGMA table_info(budgets)")
    columns = [row[1] for row in cursor.fetchall()]

    if 'start_month' not in columns:
        conn.execute("ALTER TABLE budgets ADD COLUMN start_month TEXT")


def _connect(path: str) -> sqlite3.Connection:
    # Autocommit mode: transaction() issues BEGIN IMMEDIATE / COMMIT itself
    conn = sqlite3.connect(path, timeout=get_lock_timeout(), isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def get_connection() -> sqlite3.Connection:
    """Get database connection, downloading from S3 if configured.

    Returns:
        SQLite connection with row factory set
    """
    global _db_connection, _db_path

    if _db_connection is not None:
        return _db_connection

    if s3.is_enabled():
        _db_path = s3.get_temp_path(get_db_key())
        downloaded = s3.download_file(get_db_key(), _db_path)
        _db_connection = _connect(_db_path)
        init_db(_db_connection)
        if not downloaded:
            logger.info("Created new ledger database", extra={"key": get_db_key()})
            save_db()
    else:
        _db_path = get_local_path()
        _db_connection = _connect(_db_path)
        init_db(_db_connection)

    return _db_connection


def save_db() -> None:
    """Save database to S3 when S3 persistence is on."""
    if _db_connection is not None and _db_path is not None and s3.is_enabled():
        s3.upload_file(_db_path, get_db_key())


def close_db() -> None:
    """Close database connection."""
    global _db_connection, _db_path, _tx_depth

    if _db_connection is not None:
        _db_connection.close()
        _db_connection = None
        _db_path = None
        _tx_depth = 0


@contextmanager
def transaction() -> Generator[sqlite3.Connection, None, None]:
    """Context manager for database transactions.

    Yields:
        SQLite connection

    The outermost block takes the write lock up front, commits on success,
    rolls back on exception and saves to S3. Nested blocks join the
    outer transaction.

    Raises:
        Conflict: If the write lock cannot be obtained in time
    """
    global _tx_depth
    conn = get_connection()

    if _tx_depth > 0:
        _tx_depth += 1
        try:
            yield conn
        finally:
            _tx_depth -= 1
        return

    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.OperationalError as e:
        logger.warning("Write lock unavailable", extra={"error": str(e)})
        raise Conflict('The budget is being changed by another request, please retry') from e

    _tx_depth = 1
    try:
        yield conn
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise
    finally:
        _tx_depth = 0

    save_db()


def execute(sql: str, params: tuple = ()) -> sqlite3.Cursor:
    """Execute SQL and return cursor.

    Args:
        sql: SQL statement
        params: Query parameters

    Returns:
        Cursor with results
    """
    conn = get_connection()
    return conn.execute(sql, params)


def fetch_one(sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
    """Fetch a single row."""
    cursor = execute(sql, params)
    return cursor.fetchone()


def fetch_all(sql: str, params: tuple = ()) -> List[sqlite3.Row]:
    """Fetch all rows."""
    cursor = execute(sql, params)
    return cursor.fetchall()


def row_to_dict(row: Optional[sqlite3.Row]) -> Optional[dict]:
    """Convert a Row to a dict."""
    if row is None:
        return None
    return dict(row)


def rows_to_dicts(rows: List[sqlite3.Row]) -> List[dict]:
    """Convert Rows to list of dicts."""
    return [dict(row) for row in rows]


def now_timestamp() -> str:
    """Current UTC time in SQLite's datetime('now') format."""
    return datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')


def placeholders(values: Iterable[Any]) -> str:
    """Comma separated ``?`` list for an IN clause."""
    return ', '.join('?' for _ in values)


def insert(table: str, values: Dict[str, Any]) -> int:
    """Insert a row and return its id.

    Args:
        table: Table name (internal constant, never user input)
        values: Column to value mapping

    Returns:
        New row id
    """
    columns = ', '.join(values)
    cursor = execute(
        f"INSERT INTO {table} ({columns}) VALUES ({placeholders(values)})",
        tuple(values.values())
    )
    return cursor.lastrowid


def update(table: str, row_id: int, values: Dict[str, Any]) -> None:
    """Update columns of a row by id."""
    if not values:
        return
    assignments = ', '.join(f"{column} = ?" for column in values)
    execute(f"UPDATE {table} SET {assignments} WHERE id = ?", tuple(values.values()) + (row_id,))


def delete(table: str, row_id: int) -> int:
    """Delete a row by id, returning the number of rows removed."""
    return execute(f"DELETE FROM {table} WHERE id = ?", (row_id,)).rowcount


# Convenience functions for common queries

def get_budget(budget_id: int) -> Optional[dict]:
    """Get a budget by ID."""
    return row_to_dict(fetch_one("SELECT * FROM budgets WHERE id = ?", (budget_id,)))


def get_accounts(budget_id: int, include_closed: bool = True) -> List[dict]:
    """Get a budget's accounts in display order."""
    sql = "SELECT * FROM accounts WHERE budget_id = ?"
    if not include_closed:
        sql += " AND is_closed = 0"
    sql += " ORDER BY sort_order, id"
    return rows_to_dicts(fetch_all(sql, (budget_id,)))


def get_account(account_id: int) -> Optional[dict]:
    """Get an account by ID."""
    return row_to_dict(fetch_one("SELECT * FROM accounts WHERE id = ?", (account_id,)))


def get_category_groups(budget_id: int) -> List[dict]:
    """Get a budget's category groups in display order."""
    return rows_to_dicts(fetch_all(
        "SELECT * FROM category_groups WHERE budget_id = ? ORDER BY sort_order, id",
        (budget_id,)
    ))


def get_category_group(group_id: int) -> Optional[dict]:
    """Get a category group by ID."""
    return row_to_dict(fetch_one("SELECT * FROM category_groups WHERE id = ?", (group_id,)))


def get_categories(budget_id: int, include_hidden: bool = True) -> List[dict]:
    """Get all categories of a budget, ordered by group then category.

    Each row carries the owning ``budget_id``.
    """
    sql = """
        SELECT c.*, g.budget_id
        FROM categories c
        JOIN category_groups g ON c.group_id = g.id
        WHERE g.budget_id = ?
    """
    if not include_hidden:
        sql += " AND c.is_hidden = 0"
    sql += " ORDER BY g.sort_order, g.id, c.sort_order, c.id"
    return rows_to_dicts(fetch_all(sql, (budget_id,)))


def get_category(category_id: int) -> Optional[dict]:
    """Get a category by ID, with the owning budget_id."""
    return row_to_dict(fetch_one("""
        SELECT c.*, g.budget_id
        FROM categories c
        JOIN category_groups g ON c.group_id = g.id
        WHERE c.id = ?
    """, (category_id,)))


def get_category_ids(budget_id: int) -> List[int]:
    """IDs of every category in a budget."""
    return [row['id'] for row in get_categories(budget_id)]


def get_monthly_budget(category_id: int, month: str) -> Optional[dict]:
    """Get the allocation row for a category and month key."""
    return row_to_dict(fetch_one(
        "SELECT * FROM monthly_budgets WHERE category_id = ? AND month = ?",
        (category_id, month)
    ))


def upsert_monthly_budget(category_id: int, month: str, budgeted_cents: int) -> None:
    """Create or overwrite the allocation for a category and month."""
    execute("""
        INSERT INTO monthly_budgets (category_id, month, budgeted_cents)
        VALUES (?, ?, ?)
        ON CONFLICT(category_id, month) DO UPDATE SET
            budgeted_cents = excluded.budgeted_cents,
            updated_at = datetime('now')
    """, (category_id, month, budgeted_cents))


def adjust_monthly_budget(category_id: int, month: str, delta_cents: int) -> None:
    """Add ``delta_cents`` to an allocation, creating the row at 0 first.

    A single statement, so concurrent adjustments cannot lose updates.
    """
    execute("""
        INSERT INTO monthly_budgets (category_id, month, budgeted_cents)
        VALUES (?, ?, ?)
        ON CONFLICT(category_id, month) DO UPDATE SET
            budgeted_cents = budgeted_cents + excluded.budgeted_cents,
            updated_at = datetime('now')
    """, (category_id, month, delta_cents))


def get_payee(payee_id: int) -> Optional[dict]:
    """Get a payee by ID."""
    return row_to_dict(fetch_one("SELECT * FROM payees WHERE id = ?", (payee_id,)))


def get_payee_by_name(budget_id: int, name: str) -> Optional[dict]:
    """Get a payee by its name within a budget."""
    return row_to_dict(fetch_one(
        "SELECT * FROM payees WHERE budget_id = ? AND name = ?",
        (budget_id, name)
    ))


def get_payees(budget_id: int) -> List[dict]:
    """Get payees with default category name and transaction count."""
    sql = """
        SELECT p.*,
               c.name as default_category_name,
               (SELECT COUNT(*) FROM transactions t WHERE t.payee_id = p.id) as transaction_count
        FROM payees p
        LEFT JOIN categories c ON p.default_category_id = c.id
        WHERE p.budget_id = ?
        ORDER BY p.name
    """
    return rows_to_dicts(fetch_all(sql, (budget_id,)))


def get_transaction_row(transaction_id: int) -> Optional[dict]:
    """Get a raw transaction row by ID."""
    return row_to_dict(fetch_one("SELECT * FROM transactions WHERE id = ?", (transaction_id,)))


def get_splits(transaction_ids: List[int]) -> Dict[int, List[dict]]:
    """Split rows for the given parents, keyed by transaction id."""
    result: Dict[int, List[dict]] = {tid: [] for tid in transaction_ids}
    if not transaction_ids:
        return result
    rows = fetch_all(
        f"SELECT * FROM split_transactions WHERE transaction_id IN ({placeholders(transaction_ids)}) ORDER BY id",
        tuple(transaction_ids)
    )
    for row in rows:
        result[row['transaction_id']].append(dict(row))
    return result


def insert_splits(transaction_id: int, splits: List[dict]) -> None:
    """Insert split rows (each with category_id and amount_cents)."""
    conn = get_connection()
    conn.executemany(
        "INSERT INTO split_transactions (transaction_id, category_id, amount_cents) VALUES (?, ?, ?)",
        [(transaction_id, s['category_id'], s['amount_cents']) for s in splits]
    )


def delete_splits(transaction_id: int) -> None:
    """Remove every split row of a transaction."""
    execute("DELETE FROM split_transactions WHERE transaction_id = ?", (transaction_id,))


def delete_transactions(transaction_ids: List[int]) -> int:
    """Delete transactions (split rows cascade). Returns rows removed."""
    if not transaction_ids:
        return 0
    return execute(
        f"DELETE FROM transactions WHERE id IN ({placeholders(transaction_ids)})",
        tuple(transaction_ids)
    ).rowcount


def get_recurring(recurring_id: int) -> Optional[dict]:
    """Get a recurring definition by ID."""
    return row_to_dict(fetch_one("SELECT * FROM recurring_transactions WHERE id = ?", (recurring_id,)))
