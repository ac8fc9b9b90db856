from __future__ import annotations

import logging
import sqlite3
import time
from typing import Any, Dict, Optional

from app.infra.sqlite_utils import open_async_connection
from app.settings import settings
from payments.models.enums import PlanType, Region
from payments.models.order import from_epoch
from payments.models.subscription import SubscriptionState

logger = logging.getLogger(__name__)


class UserRepository:
    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or settings.DATABASE_PATH

    @staticmethod
    def _user_from_row(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "email": row["email"],
            "name": row["name"],
            "region": Region(row["region"] or Region.GLOBAL.value),
            "subscription_type": PlanType(row["subscription_type"]) if row["subscription_type"] else None,
            "subscription_expires_at": from_epoch(row["subscription_expires_at"]),
            "subscription_version": int(row["subscription_version"] or 0),
            "created_at": from_epoch(row["created_at"]),
            "updated_at": from_epoch(row["updated_at"]),
        }

    async def create_user(
        self,
        email: str,
        region: Region,
        name: Optional[str] = None,
        password_hash: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Register a user. The region is stored once here and never re-derived."""
        region = Region(region)
        now = int(time.time())
        async with open_async_connection(self.db_path) as conn:
            cursor = await conn.execute(
                """
                INSERT INTO users (email, name, password_hash, region, subscription_version, created_at, updated_at)
                VALUES (?, ?, ?, ?, 0, ?, ?)
                """,
                (email.strip().lower(), name, password_hash, region.value, now, now),
            )
            user_id = cursor.lastrowid
        logger.info(f"User created: id={user_id}, region={region.value}")
        return await self.get_by_id(user_id)

    async def get_by_id(self, user_id: int) -> Optional[Dict[str, Any]]:
        async with open_async_connection(self.db_path) as conn:
            async with conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)) as cursor:
                row = await cursor.fetchone()
        return self._user_from_row(row) if row else None

    async def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        async with open_async_connection(self.db_path) as conn:
            async with conn.execute(
                "SELECT * FROM users WHERE email = ?", (email.strip().lower(),)
            ) as cursor:
                row = await cursor.fetchone()
        return self._user_from_row(row) if row else None

    async def get_password_hash(self, user_id: int) -> Optional[str]:
        """Kept out of the user dict so it never reaches a response body"""
        async with open_async_connection(self.db_path) as conn:
            async with conn.execute("SELECT password_hash FROM users WHERE id = ?", (user_id,)) as cursor:
                row = await cursor.fetchone()
        return row["password_hash"] if row else None

    async def get_subscription_state(self, user_id: int) -> Optional[SubscriptionState]:
        async with open_async_connection(self.db_path) as conn:
            async with conn.execute(
                """
                SELECT id, region, subscription_type, subscription_expires_at, subscription_version
                FROM users WHERE id = ?
                """,
                (user_id,),
            ) as cursor:
                row = await cursor.fetchone()
        if not row:
            return None
        return SubscriptionState(
            user_id=row["id"],
            subscription_type=PlanType(row["subscription_type"]) if row["subscription_type"] else None,
            expires_at=from_epoch(row["subscription_expires_at"]),
            version=int(row["subscription_version"] or 0),
            region=Region(row["region"] or Region.GLOBAL.value),
        )
