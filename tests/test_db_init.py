import sqlite3

import db


def test_init_db_with_migrations_creates_core_tables(tmp_path, monkeypatch):
    db_path = tmp_path / "billing_test.db"
    monkeypatch.setattr(db, "DATABASE_PATH", str(db_path), raising=False)

    db.init_db_with_migrations()

    conn = sqlite3.connect(db.DATABASE_PATH)
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
    tables = {row[0] for row in cursor.fetchall()}
    conn.close()

    assert {"users", "payment_orders"}.issubset(tables)


def test_migration_adds_subscription_columns_to_legacy_tables(tmp_path):
    db_path = str(tmp_path / "legacy.db")
    conn = sqlite3.connect(db_path)
    conn.execute("CREATE TABLE users (id INTEGER PRIMARY KEY AUTOINCREMENT, email TEXT UNIQUE NOT NULL, name TEXT, created_at INTEGER, updated_at INTEGER)")
    conn.execute(
        """
        CREATE TABLE payment_orders (
            id INTEGER PRIMARY KEY AUTOINCREMENT, order_no TEXT UNIQUE NOT NULL, user_id INTEGER NOT NULL,
            amount REAL NOT NULL, currency TEXT, payment_method TEXT NOT NULL, payment_status TEXT,
            region TEXT, description TEXT, provider_order_id TEXT, callback_data TEXT,
            created_at INTEGER, updated_at INTEGER, paid_at INTEGER
        )
        """
    )
    conn.execute("INSERT INTO users (email, created_at) VALUES ('old@example.com', 1)")
    conn.commit()
    conn.close()

    db.init_db_with_migrations(db_path)
    db.init_db_with_migrations(db_path)

    conn = sqlite3.connect(db_path)
    user_columns = {row[1] for row in conn.execute("PRAGMA table_info(users)")}
    order_columns = {row[1] for row in conn.execute("PRAGMA table_info(payment_orders)")}
    region, version = conn.execute("SELECT region, subscription_version FROM users").fetchone()
    conn.close()

    assert {"password_hash", "region", "subscription_type", "subscription_expires_at", "subscription_version"} <= user_columns
    assert {"plan_code", "metadata", "review_reason", "subscription_applied_at"} <= order_columns
    assert region == "global"
    assert version == 0
