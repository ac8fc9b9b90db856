import sqlite3
import logging
from typing import Optional

from app.infra.sqlite_utils import open_connection
from app.settings import settings

logger = logging.getLogger(__name__)

DATABASE_PATH = settings.DATABASE_PATH


def init_db(db_path: Optional[str] = None):
    conn = open_connection(db_path or DATABASE_PATH)
    c = conn.cursor()

    c.execute("""
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT UNIQUE NOT NULL,
        name TEXT,
        password_hash TEXT,
        region TEXT NOT NULL DEFAULT 'global',
        subscription_type TEXT,
        subscription_expires_at INTEGER,
        subscription_version INTEGER NOT NULL DEFAULT 0,
        created_at INTEGER,
        updated_at INTEGER
    )""")

    c.execute("""
    CREATE TABLE IF NOT EXISTS payment_orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_no TEXT UNIQUE NOT NULL,
        user_id INTEGER NOT NULL,
        amount REAL NOT NULL,
        currency TEXT NOT NULL DEFAULT 'USD',
        payment_method TEXT NOT NULL,
        payment_status TEXT NOT NULL DEFAULT 'pending',
        region TEXT NOT NULL DEFAULT 'global',
        plan_code TEXT,
        description TEXT,
        provider_order_id TEXT,
        callback_data TEXT,
        metadata TEXT,
        review_reason TEXT,
        created_at INTEGER,
        updated_at INTEGER,
        paid_at INTEGER,
        subscription_applied_at INTEGER,
        FOREIGN KEY (user_id) REFERENCES users(id)
    )""")

    conn.commit()
    conn.close()


def migrate_add_subscription_columns(db_path: Optional[str] = None):
    """Databases created before per-order accrual tracking lack these columns."""
    conn = open_connection(db_path or DATABASE_PATH)
    c = conn.cursor()

    c.execute("PRAGMA table_info(users)")
    user_columns = {row[1] for row in c.fetchall()}
    for name, decl in (
        ("password_hash", "TEXT"),
        ("region", "TEXT NOT NULL DEFAULT 'global'"),
        ("subscription_type", "TEXT"),
        ("subscription_expires_at", "INTEGER"),
        ("subscription_version", "INTEGER NOT NULL DEFAULT 0"),
    ):
        if name not in user_columns:
            c.execute(f"ALTER TABLE users ADD COLUMN {name} {decl}")
            logger.info(f"Added users.{name}")

    c.execute("PRAGMA table_info(payment_orders)")
    order_columns = {row[1] for row in c.fetchall()}
    for name, decl in (
        ("plan_code", "TEXT"),
        ("metadata", "TEXT"),
        ("review_reason", "TEXT"),
        ("subscription_applied_at", "INTEGER"),
    ):
        if name not in order_columns:
            c.execute(f"ALTER TABLE payment_orders ADD COLUMN {name} {decl}")
            logger.info(f"Added payment_orders.{name}")

    conn.commit()
    conn.close()


def migrate_add_common_indexes(db_path: Optional[str] = None):
    conn = open_connection(db_path or DATABASE_PATH)
    c = conn.cursor()
    indexes = [
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_payment_orders_order_no ON payment_orders(order_no)",
        "CREATE INDEX IF NOT EXISTS idx_payment_orders_user_status ON payment_orders(user_id, payment_status)",
        "CREATE INDEX IF NOT EXISTS idx_payment_orders_created_at ON payment_orders(created_at)",
        "CREATE INDEX IF NOT EXISTS idx_payment_orders_applied ON payment_orders(user_id, subscription_applied_at)",
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_email ON users(email)",
    ]
    for index_sql in indexes:
        try:
            c.execute(index_sql)
        except sqlite3.OperationalError as e:
            logger.warning(f"Failed to create index: {index_sql}: {e}")
    conn.commit()
    conn.close()


def init_db_with_migrations(db_path: Optional[str] = None):
    init_db(db_path)
    migrate_add_subscription_columns(db_path)
    migrate_add_common_indexes(db_path)
    logger.info(f"Database ready: {db_path or DATABASE_PATH}")
