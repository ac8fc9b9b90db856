import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ..models.enums import PaymentCurrency, PaymentMethod, PaymentStatus, PlanType, Region
from ..models.order import PaymentOrder, from_epoch, to_epoch

from app.infra.sqlite_utils import open_async_connection, retry_async_db_operation

logger = logging.getLogger(__name__)

# Effective payment time of an order row, mirrors order_effective_paid_at()
_EFFECTIVE_PAID_AT_SQL = "COALESCE(paid_at, updated_at, created_at)"


class ApplyWriteResult(str, Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    NEWER_ORDER_APPLIED = "newer_order_applied"
    VERSION_CONFLICT = "version_conflict"
    USER_NOT_FOUND = "user_not_found"


def _load_json(value: Any) -> Optional[Dict[str, Any]]:
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        return value
    try:
        parsed = json.loads(value)
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Unparseable JSON column value: {str(value)[:200]}")
        return None
    return parsed if isinstance(parsed, dict) else None


class OrderRepository:
    """Async repository for payment orders"""

    def __init__(self, db_path: str = None):
        if db_path is None:
            from app.settings import settings
            db_path = settings.DATABASE_PATH
        if db_path != ":memory:" and not os.path.isabs(db_path):
            db_path = os.path.abspath(db_path)
        self.db_path = db_path

    def _order_from_row(self, row: sqlite3.Row) -> PaymentOrder:
        return PaymentOrder(
            id=row["id"],
            order_no=row["order_no"],
            user_id=row["user_id"],
            amount=float(row["amount"] or 0),
            currency=PaymentCurrency(row["currency"]) if row["currency"] else PaymentCurrency.USD,
            payment_method=PaymentMethod(row["payment_method"]),
            payment_status=PaymentStatus(row["payment_status"] or PaymentStatus.PENDING.value),
            region=Region(row["region"] or Region.GLOBAL.value),
            plan_code=PlanType(row["plan_code"]) if row["plan_code"] else None,
            description=row["description"],
            provider_order_id=row["provider_order_id"],
            callback_data=_load_json(row["callback_data"]),
            metadata=_load_json(row["metadata"]) or {},
            review_reason=row["review_reason"],
            created_at=from_epoch(row["created_at"]),
            updated_at=from_epoch(row["updated_at"]),
            paid_at=from_epoch(row["paid_at"]),
            subscription_applied_at=from_epoch(row["subscription_applied_at"]),
        )

    def _order_to_row(self, order: PaymentOrder) -> tuple:
        return (
            order.order_no,
            order.user_id,
            order.amount,
            order.currency.value,
            order.payment_method.value,
            order.payment_status.value,
            order.region.value,
            order.plan_code.value if order.plan_code else None,
            order.description,
            order.provider_order_id,
            json.dumps(order.callback_data, ensure_ascii=False) if order.callback_data is not None else None,
            json.dumps(order.metadata, ensure_ascii=False) if order.metadata else None,
            order.review_reason,
            to_epoch(order.created_at),
            to_epoch(order.updated_at),
            to_epoch(order.paid_at),
            to_epoch(order.subscription_applied_at),
        )

    async def create(self, order: PaymentOrder) -> PaymentOrder:
        """Insert an order; a duplicate order_no returns the stored row."""
        now = datetime.now(timezone.utc)
        if order.created_at is None:
            order.created_at = now
        if order.updated_at is None:
            order.updated_at = now

        async with open_async_connection(self.db_path) as conn:
            try:
                cursor = await conn.execute(
                    """
                    INSERT INTO payment_orders (
                        order_no, user_id, amount, currency, payment_method, payment_status,
                        region, plan_code, description, provider_order_id, callback_data,
                        metadata, review_reason, created_at, updated_at, paid_at,
                        subscription_applied_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    self._order_to_row(order),
                )
            except sqlite3.IntegrityError:
                async with conn.execute(
                    "SELECT * FROM payment_orders WHERE order_no = ?", (order.order_no,)
                ) as cursor:
                    row = await cursor.fetchone()
                if row:
                    logger.info(f"[ORDERS] Order already exists, returning existing: {order.order_no}")
                    return self._order_from_row(row)
                raise
            order.id = cursor.lastrowid
            logger.info(f"[ORDERS] Order created: {order.order_no} user={order.user_id} amount={order.amount}")
            return order

    async def get_by_order_no(self, order_no: str) -> Optional[PaymentOrder]:
        async with open_async_connection(self.db_path) as conn:
            async with conn.execute(
                "SELECT * FROM payment_orders WHERE order_no = ?", (order_no,)
            ) as cursor:
                row = await cursor.fetchone()
        return self._order_from_row(row) if row else None

    async def list_paid_for_user(self, user_id: int) -> List[PaymentOrder]:
        """All paid orders of a user, oldest first."""
        async with open_async_connection(self.db_path) as conn:
            async with conn.execute(
                f"""
                SELECT * FROM payment_orders
                WHERE user_id = ? AND payment_status = 'paid'
                ORDER BY {_EFFECTIVE_PAID_AT_SQL} ASC, id ASC
                """,
                (user_id,),
            ) as cursor:
                rows = await cursor.fetchall()
        return [self._order_from_row(row) for row in rows]

    async def list_history(
        self, region: Optional[Region] = None, user_id: Optional[int] = None, limit: int = 50
    ) -> List[PaymentOrder]:
        """Most recent orders first."""
        conditions = []
        params: list = []
        if region is not None:
            conditions.append("region = ?")
            params.append(Region(region).value)
        if user_id is not None:
            conditions.append("user_id = ?")
            params.append(user_id)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(limit)

        async with open_async_connection(self.db_path) as conn:
            async with conn.execute(
                f"SELECT * FROM payment_orders {where} ORDER BY created_at DESC, id DESC LIMIT ?",
                params,
            ) as cursor:
                rows = await cursor.fetchall()
        return [self._order_from_row(row) for row in rows]

    async def try_mark_paid(
        self,
        order_no: str,
        provider_order_id: str,
        callback_data: Optional[Dict[str, Any]] = None,
        paid_at: Optional[datetime] = None,
    ) -> bool:
        """
        Atomically move an order from pending to paid.

        Returns:
            True if this call made the transition, False if the order was not pending
        """
        paid_ts = to_epoch(paid_at) or int(datetime.now(timezone.utc).timestamp())

        async def _update_operation():
            async with open_async_connection(self.db_path) as conn:
                cursor = await conn.execute(
                    """
                    UPDATE payment_orders
                    SET payment_status = 'paid', provider_order_id = ?, callback_data = ?,
                        paid_at = ?, updated_at = ?
                    WHERE order_no = ? AND payment_status = 'pending'
                    """,
                    (
                        provider_order_id,
                        json.dumps(callback_data, ensure_ascii=False) if callback_data is not None else None,
                        paid_ts,
                        paid_ts,
                        order_no,
                    ),
                )
                success = cursor.rowcount > 0
                if success:
                    logger.info(f"[ORDERS] Order {order_no} pending -> paid (provider id {provider_order_id})")
                else:
                    logger.debug(f"[ORDERS] Order {order_no} not pending, paid transition skipped")
                return success

        return await retry_async_db_operation(
            _update_operation,
            operation_name="try_mark_paid",
            operation_context={"order_no": order_no},
        )

    async def try_update_status(self, order_no: str, new_status: PaymentStatus, expected_status: PaymentStatus) -> bool:
        """Change status only if the current status equals expected_status."""
        async with open_async_connection(self.db_path) as conn:
            cursor = await conn.execute(
                "UPDATE payment_orders SET payment_status = ?, updated_at = ? WHERE order_no = ? AND payment_status = ?",
                (new_status.value, int(datetime.now(timezone.utc).timestamp()), order_no, expected_status.value),
            )
            success = cursor.rowcount > 0
        if success:
            logger.info(f"[ORDERS] Order {order_no} {expected_status.value} -> {new_status.value}")
        return success

    async def mark_for_review(self, order_no: str, reason: str) -> bool:
        """Flag a paid order whose subscription could not be applied."""
        # updated_at is left alone: it is a fallback payment time for orders without paid_at
        async with open_async_connection(self.db_path) as conn:
            cursor = await conn.execute(
                "UPDATE payment_orders SET review_reason = ? WHERE order_no = ? AND subscription_applied_at IS NULL",
                (reason, order_no),
            )
            flagged = cursor.rowcount > 0
        if flagged:
            logger.warning(f"[ORDERS] Order {order_no} flagged for manual review: {reason}")
        return flagged

    async def apply_subscription(
        self,
        order_no: str,
        user_id: int,
        effective_paid_at: datetime,
        expected_version: int,
        subscription_type: PlanType,
        expires_at: datetime,
        applied_at: Optional[datetime] = None,
    ) -> ApplyWriteResult:
        """
        Persist one order's accrual and its "applied" marker in one transaction.

        The write happens only if the order has not been applied yet, no newer
        order of the same user has been applied, and the user row is still at
        expected_version. Otherwise nothing is written.
        """
        applied_ts = to_epoch(applied_at) or int(datetime.now(timezone.utc).timestamp())
        paid_ts = to_epoch(effective_paid_at)

        async def _apply_operation() -> ApplyWriteResult:
            async with open_async_connection(self.db_path) as conn:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    result = await self._apply_in_transaction(
                        conn, order_no, user_id, paid_ts, expected_version,
                        subscription_type, to_epoch(expires_at), applied_ts,
                    )
                except Exception:
                    await conn.execute("ROLLBACK")
                    raise
                await conn.execute("COMMIT" if result == ApplyWriteResult.APPLIED else "ROLLBACK")
                return result

        return await retry_async_db_operation(
            _apply_operation,
            operation_name="apply_subscription",
            operation_context={"order_no": order_no, "user_id": user_id},
        )

    async def _apply_in_transaction(
        self,
        conn,
        order_no: str,
        user_id: int,
        paid_ts: int,
        expected_version: int,
        subscription_type: PlanType,
        expires_ts: int,
        applied_ts: int,
    ) -> ApplyWriteResult:
        cursor = await conn.execute(
            """
            UPDATE payment_orders SET subscription_applied_at = ?, review_reason = NULL
            WHERE order_no = ? AND user_id = ? AND subscription_applied_at IS NULL
            """,
            (applied_ts, order_no, user_id),
        )
        if cursor.rowcount == 0:
            return ApplyWriteResult.ALREADY_APPLIED

        async with conn.execute(
            f"""
            SELECT order_no FROM payment_orders
            WHERE user_id = ? AND order_no != ? AND subscription_applied_at IS NOT NULL
              AND {_EFFECTIVE_PAID_AT_SQL} > ?
            LIMIT 1
            """,
            (user_id, order_no, paid_ts),
        ) as cur:
            newer = await cur.fetchone()
        if newer:
            logger.warning(
                f"[ORDERS] Order {order_no} is older than already applied order {newer['order_no']} "
                f"for user {user_id}"
            )
            return ApplyWriteResult.NEWER_ORDER_APPLIED

        return await self._write_user_subscription(
            conn, user_id, expected_version, subscription_type, expires_ts, applied_ts
        )

    async def _write_user_subscription(
        self,
        conn,
        user_id: int,
        expected_version: int,
        subscription_type: Optional[PlanType],
        expires_ts: Optional[int],
        now_ts: int,
    ) -> ApplyWriteResult:
        cursor = await conn.execute(
            """
            UPDATE users
            SET subscription_type = ?, subscription_expires_at = ?,
                subscription_version = subscription_version + 1, updated_at = ?
            WHERE id = ? AND subscription_version = ?
            """,
            (
                subscription_type.value if subscription_type else None,
                expires_ts,
                now_ts,
                user_id,
                expected_version,
            ),
        )
        if cursor.rowcount > 0:
            return ApplyWriteResult.APPLIED

        async with conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)) as cur:
            exists = await cur.fetchone()
        return ApplyWriteResult.VERSION_CONFLICT if exists else ApplyWriteResult.USER_NOT_FOUND

    async def apply_recomputed(
        self,
        user_id: int,
        expected_version: int,
        subscription_type: Optional[PlanType],
        expires_at: Optional[datetime],
        order_nos: Sequence[str],
        applied_at: Optional[datetime] = None,
    ) -> ApplyWriteResult:
        """Persist a subscription rebuilt from history and mark the folded orders applied."""
        applied_ts = to_epoch(applied_at) or int(datetime.now(timezone.utc).timestamp())

        async def _recompute_operation() -> ApplyWriteResult:
            async with open_async_connection(self.db_path) as conn:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    result = await self._write_user_subscription(
                        conn, user_id, expected_version, subscription_type, to_epoch(expires_at), applied_ts
                    )
                    if result == ApplyWriteResult.APPLIED:
                        for order_no in order_nos:
                            await conn.execute(
                                """
                                UPDATE payment_orders
                                SET subscription_applied_at = COALESCE(subscription_applied_at, ?),
                                    review_reason = NULL
                                WHERE order_no = ? AND user_id = ?
                                """,
                                (applied_ts, order_no, user_id),
                            )
                except Exception:
                    await conn.execute("ROLLBACK")
                    raise
                await conn.execute("COMMIT" if result == ApplyWriteResult.APPLIED else "ROLLBACK")
                return result

        return await retry_async_db_operation(
            _recompute_operation,
            operation_name="apply_recomputed",
            operation_context={"user_id": user_id},
        )
