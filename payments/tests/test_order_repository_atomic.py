"""
Atomic writes of the order repository: paid transition, applied marker, version check
"""
import asyncio
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

import db
from payments.models.enums import PaymentMethod, PaymentStatus, PlanType, Region
from payments.models.order import PaymentOrder, from_epoch, to_epoch
from payments.repositories.order_repository import ApplyWriteResult, OrderRepository
from payments.services.subscription_accrual_service import ApplyOutcome, SubscriptionAccrualService
from app.repositories.user_repository import UserRepository


def dt(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.asyncio
class TestOrderRepositoryAtomic:
    """Conditional updates used as locks"""

    @pytest.fixture
    def repo_db(self, tmp_path):
        db_path = str(tmp_path / "orders.db")
        db.init_db_with_migrations(db_path)
        return db_path

    @pytest.fixture
    def order_repo(self, repo_db):
        return OrderRepository(repo_db)

    @pytest.fixture
    def user_repo(self, repo_db):
        return UserRepository(repo_db)

    async def _paid_order(self, order_repo, user_id, order_no, paid_at, plan=PlanType.MONTHLY):
        order = PaymentOrder(
            order_no=order_no,
            user_id=user_id,
            amount=14.99,
            payment_method=PaymentMethod.STRIPE,
            plan_code=plan,
        )
        await order_repo.create(order)
        assert await order_repo.try_mark_paid(order_no, f"pi_{order_no}", paid_at=paid_at)
        return await order_repo.get_by_order_no(order_no)

    async def test_create_with_duplicate_order_no_returns_existing(self, order_repo, user_repo):
        user = await user_repo.create_user("dup@example.com", Region.GLOBAL)
        first = await order_repo.create(PaymentOrder(order_no="ORDER_DUP", user_id=user["id"], amount=10))
        second = await order_repo.create(PaymentOrder(order_no="ORDER_DUP", user_id=user["id"], amount=99))

        assert second.id == first.id
        assert second.amount == 10

    async def test_mark_paid_only_once(self, order_repo, user_repo):
        user = await user_repo.create_user("paid@example.com", Region.GLOBAL)
        await order_repo.create(PaymentOrder(order_no="ORDER_P1", user_id=user["id"], amount=10))

        first = await order_repo.try_mark_paid("ORDER_P1", "pi_1", paid_at=dt(2024, 1, 1))
        second = await order_repo.try_mark_paid("ORDER_P1", "pi_2", paid_at=dt(2024, 2, 1))

        order = await order_repo.get_by_order_no("ORDER_P1")
        assert first is True
        assert second is False
        assert order.provider_order_id == "pi_1"
        assert order.paid_at == dt(2024, 1, 1)

    async def test_status_update_requires_expected_status(self, order_repo, user_repo):
        user = await user_repo.create_user("status@example.com", Region.GLOBAL)
        await order_repo.create(PaymentOrder(order_no="ORDER_S1", user_id=user["id"], amount=10))

        assert await order_repo.try_update_status("ORDER_S1", PaymentStatus.CANCELLED, PaymentStatus.PENDING)
        assert not await order_repo.try_update_status("ORDER_S1", PaymentStatus.FAILED, PaymentStatus.PENDING)
        assert (await order_repo.get_by_order_no("ORDER_S1")).payment_status == PaymentStatus.CANCELLED

    async def test_apply_subscription_writes_marker_and_user_together(self, order_repo, user_repo):
        user = await user_repo.create_user("apply@example.com", Region.GLOBAL)
        order = await self._paid_order(order_repo, user["id"], "ORDER_A1", dt(2024, 1, 1))

        result = await order_repo.apply_subscription(
            order_no=order.order_no,
            user_id=user["id"],
            effective_paid_at=order.paid_at,
            expected_version=0,
            subscription_type=PlanType.MONTHLY,
            expires_at=dt(2024, 1, 31),
            applied_at=dt(2024, 1, 1),
        )

        state = await user_repo.get_subscription_state(user["id"])
        stored = await order_repo.get_by_order_no("ORDER_A1")
        assert result == ApplyWriteResult.APPLIED
        assert state.version == 1
        assert state.expires_at == dt(2024, 1, 31)
        assert stored.subscription_applied_at == dt(2024, 1, 1)

    async def test_apply_subscription_second_time_is_rejected(self, order_repo, user_repo):
        user = await user_repo.create_user("twice@example.com", Region.GLOBAL)
        order = await self._paid_order(order_repo, user["id"], "ORDER_A2", dt(2024, 1, 1))
        kwargs = dict(
            order_no=order.order_no,
            user_id=user["id"],
            effective_paid_at=order.paid_at,
            subscription_type=PlanType.MONTHLY,
            expires_at=dt(2024, 1, 31),
        )

        assert await order_repo.apply_subscription(expected_version=0, **kwargs) == ApplyWriteResult.APPLIED
        assert await order_repo.apply_subscription(expected_version=1, **kwargs) == ApplyWriteResult.ALREADY_APPLIED
        assert (await user_repo.get_subscription_state(user["id"])).version == 1

    async def test_stale_version_rolls_back_marker(self, order_repo, user_repo):
        user = await user_repo.create_user("stale@example.com", Region.GLOBAL)
        order = await self._paid_order(order_repo, user["id"], "ORDER_A3", dt(2024, 1, 1))

        result = await order_repo.apply_subscription(
            order_no=order.order_no,
            user_id=user["id"],
            effective_paid_at=order.paid_at,
            expected_version=7,
            subscription_type=PlanType.MONTHLY,
            expires_at=dt(2024, 1, 31),
        )

        assert result == ApplyWriteResult.VERSION_CONFLICT
        assert (await order_repo.get_by_order_no("ORDER_A3")).subscription_applied_at is None
        assert (await user_repo.get_subscription_state(user["id"])).expires_at is None

    async def test_newer_applied_order_blocks_older_one(self, order_repo, user_repo):
        user = await user_repo.create_user("order@example.com", Region.GLOBAL)
        older = await self._paid_order(order_repo, user["id"], "ORDER_OLD", dt(2024, 1, 1))
        newer = await self._paid_order(order_repo, user["id"], "ORDER_NEW", dt(2024, 1, 10))

        assert await order_repo.apply_subscription(
            order_no=newer.order_no, user_id=user["id"], effective_paid_at=newer.paid_at,
            expected_version=0, subscription_type=PlanType.MONTHLY, expires_at=dt(2024, 2, 9),
        ) == ApplyWriteResult.APPLIED

        result = await order_repo.apply_subscription(
            order_no=older.order_no, user_id=user["id"], effective_paid_at=older.paid_at,
            expected_version=1, subscription_type=PlanType.MONTHLY, expires_at=dt(2024, 3, 10),
        )

        assert result == ApplyWriteResult.NEWER_ORDER_APPLIED
        assert (await order_repo.get_by_order_no("ORDER_OLD")).subscription_applied_at is None
        assert (await user_repo.get_subscription_state(user["id"])).expires_at == dt(2024, 2, 9)

    async def test_mark_for_review_skips_applied_orders(self, order_repo, user_repo, repo_db):
        user = await user_repo.create_user("review@example.com", Region.GLOBAL)
        await self._paid_order(order_repo, user["id"], "ORDER_R1", dt(2024, 1, 1))

        assert await order_repo.mark_for_review("ORDER_R1", "unclassifiable_plan")

        conn = sqlite3.connect(repo_db)
        conn.execute("UPDATE payment_orders SET subscription_applied_at = 1 WHERE order_no = 'ORDER_R1'")
        conn.commit()
        conn.close()

        assert not await order_repo.mark_for_review("ORDER_R1", "missing_timestamp")

    async def test_paid_orders_listed_oldest_first(self, order_repo, user_repo):
        user = await user_repo.create_user("list@example.com", Region.GLOBAL)
        await self._paid_order(order_repo, user["id"], "ORDER_L2", dt(2024, 2, 1))
        await self._paid_order(order_repo, user["id"], "ORDER_L1", dt(2024, 1, 1))
        await order_repo.create(PaymentOrder(order_no="ORDER_L3", user_id=user["id"], amount=10))

        orders = await order_repo.list_paid_for_user(user["id"])

        assert [o.order_no for o in orders] == ["ORDER_L1", "ORDER_L2"]

    async def test_concurrent_applies_of_one_order_extend_once(self, repo_db, order_repo, user_repo):
        user = await user_repo.create_user("race@example.com", Region.GLOBAL)
        await self._paid_order(order_repo, user["id"], "ORDER_RACE", dt(2024, 1, 1))
        service = SubscriptionAccrualService(repo_db)

        results = await asyncio.gather(
            *[service.apply_paid_order("ORDER_RACE", now=dt(2024, 1, 1)) for _ in range(5)]
        )

        outcomes = [r.outcome for r in results]
        assert outcomes.count(ApplyOutcome.APPLIED) == 1
        assert set(outcomes) <= {ApplyOutcome.APPLIED, ApplyOutcome.ALREADY_APPLIED}
        state = await user_repo.get_subscription_state(user["id"])
        assert state.expires_at == dt(2024, 1, 31)
        assert state.version == 1

    async def test_concurrent_applies_of_different_orders_all_count(self, repo_db, order_repo, user_repo):
        user = await user_repo.create_user("race2@example.com", Region.GLOBAL)
        t1 = dt(2024, 1, 1)
        for i in range(3):
            await self._paid_order(order_repo, user["id"], f"ORDER_C{i}", t1 + timedelta(days=i))
        service = SubscriptionAccrualService(repo_db, max_attempts=10)

        results = await asyncio.gather(
            *[service.apply_paid_order(f"ORDER_C{i}", now=t1 + timedelta(days=3)) for i in range(3)]
        )

        assert all(r.success for r in results)
        state = await user_repo.get_subscription_state(user["id"])
        assert state.expires_at == t1 + timedelta(days=90)
        for i in range(3):
            assert (await order_repo.get_by_order_no(f"ORDER_C{i}")).subscription_applied_at is not None
