"""
pytest configuration for billing tests
"""
import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import pytest

import db


def ts(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


@pytest.fixture
def db_path(tmp_path) -> str:
    """Temporary database with the full schema"""
    path = str(tmp_path / "billing_test.db")
    db.init_db_with_migrations(path)
    return path


@pytest.fixture
def make_user(db_path) -> Callable[..., int]:
    """Insert a user row directly and return its id"""
    counter = {"n": 0}

    def _make_user(
        region: str = "global",
        subscription_type: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        email: Optional[str] = None,
    ) -> int:
        counter["n"] += 1
        conn = sqlite3.connect(db_path)
        try:
            cursor = conn.execute(
                """
                INSERT INTO users (email, name, region, subscription_type, subscription_expires_at,
                                   subscription_version, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    email or f"user{counter['n']}@example.com",
                    f"User {counter['n']}",
                    region,
                    subscription_type,
                    ts(expires_at),
                    ts(datetime(2023, 1, 1, tzinfo=timezone.utc)),
                    ts(datetime(2023, 1, 1, tzinfo=timezone.utc)),
                ),
            )
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    return _make_user


@pytest.fixture
def make_order(db_path) -> Callable[..., str]:
    """Insert an order row directly and return its order_no"""
    counter = {"n": 0}

    def _make_order(
        user_id: int,
        status: str = "paid",
        plan_code: Optional[str] = None,
        description: Optional[str] = None,
        amount: float = 14.99,
        currency: str = "USD",
        paid_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        applied_at: Optional[datetime] = None,
        region: str = "global",
        order_no: Optional[str] = None,
    ) -> str:
        counter["n"] += 1
        order_no = order_no or f"ORDER{1700000000000 + counter['n']}TEST{counter['n']:05d}"
        conn = sqlite3.connect(db_path)
        try:
            conn.execute(
                """
                INSERT INTO payment_orders (
                    order_no, user_id, amount, currency, payment_method, payment_status, region,
                    plan_code, description, created_at, updated_at, paid_at, subscription_applied_at
                ) VALUES (?, ?, ?, ?, 'stripe', ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    order_no,
                    user_id,
                    amount,
                    currency,
                    status,
                    region,
                    plan_code,
                    description,
                    ts(created_at),
                    ts(updated_at),
                    ts(paid_at),
                    ts(applied_at),
                ),
            )
            conn.commit()
        finally:
            conn.close()
        return order_no

    return _make_order


@pytest.fixture
def fetch_user(db_path) -> Callable[[int], Dict[str, Any]]:
    def _fetch(user_id: int) -> Dict[str, Any]:
        conn = sqlite3.connect(db_path)
        conn.row_factory = sqlite3.Row
        try:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return dict(row) if row else {}
        finally:
            conn.close()

    return _fetch


@pytest.fixture
def fetch_order(db_path) -> Callable[[str], Dict[str, Any]]:
    def _fetch(order_no: str) -> Dict[str, Any]:
        conn = sqlite3.connect(db_path)
        conn.row_factory = sqlite3.Row
        try:
            row = conn.execute("SELECT * FROM payment_orders WHERE order_no = ?", (order_no,)).fetchone()
            if not row:
                return {}
            data = dict(row)
            if data.get("callback_data"):
                data["callback_data"] = json.loads(data["callback_data"])
            return data
        finally:
            conn.close()

    return _fetch
