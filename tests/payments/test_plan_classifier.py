import pytest

from payments.models.enums import PaymentCurrency, PlanType
from payments.models.errors import PlanClassificationError
from payments.models.order import PaymentOrder
from payments.utils.plan_classifier import (
    SOURCE_AMOUNT,
    SOURCE_DESCRIPTION,
    SOURCE_PLAN_CODE,
    classify_plan_description,
    infer_plan_from_amount,
    resolve_order_plan,
)


@pytest.mark.parametrize(
    "description, expected",
    [
        ("Pro Plan - Pro Yearly", PlanType.YEARLY),
        ("Pro Plan - Pro Monthly", PlanType.MONTHLY),
        ("pro-yearly", PlanType.YEARLY),
        ("PRO MONTHLY", PlanType.MONTHLY),
        ("Annual subscription", PlanType.YEARLY),
        ("1 year access", PlanType.YEARLY),
        ("1 month access", PlanType.MONTHLY),
    ],
)
def test_classify_plan_description(description, expected):
    assert classify_plan_description(description) == expected


def test_description_naming_both_plans_is_yearly():
    assert classify_plan_description("Upgrade from Pro Monthly to Pro Yearly") == PlanType.YEARLY
    assert classify_plan_description("monthly / yearly") == PlanType.YEARLY


@pytest.mark.parametrize("description", [None, "", "   ", "Pro Plan", "Gift card"])
def test_unknown_descriptions_are_not_classified(description):
    assert classify_plan_description(description) is None


@pytest.mark.parametrize(
    "amount, currency, expected",
    [
        (149.99, "USD", PlanType.YEARLY),
        (100, "USD", PlanType.YEARLY),
        (14.99, "USD", PlanType.MONTHLY),
        (999, "CNY", PlanType.YEARLY),
        (500, "CNY", PlanType.YEARLY),
        (149.99, "CNY", PlanType.MONTHLY),
        (99, "CNY", PlanType.MONTHLY),
        (600, None, PlanType.YEARLY),
        (200, "EUR", PlanType.MONTHLY),
    ],
)
def test_infer_plan_from_amount(amount, currency, expected):
    assert infer_plan_from_amount(amount, currency) == expected


@pytest.mark.parametrize("amount", [None, 0, -5])
def test_infer_plan_from_amount_needs_positive_amount(amount):
    assert infer_plan_from_amount(amount, "USD") is None


def test_resolve_prefers_plan_code_over_description():
    order = PaymentOrder(order_no="O1", plan_code=PlanType.MONTHLY, description="Pro Plan - Pro Yearly", amount=149.99)

    resolution = resolve_order_plan(order)

    assert resolution.plan_type == PlanType.MONTHLY
    assert resolution.source == SOURCE_PLAN_CODE


def test_resolve_uses_description_before_amount():
    order = PaymentOrder(order_no="O2", description="Pro Plan - Pro Monthly", amount=149.99)

    resolution = resolve_order_plan(order)

    assert resolution.plan_type == PlanType.MONTHLY
    assert resolution.source == SOURCE_DESCRIPTION


def test_resolve_falls_back_to_amount_for_empty_description():
    yearly = PaymentOrder(order_no="O3", description="", amount=149.99, currency=PaymentCurrency.USD)
    monthly = PaymentOrder(order_no="O4", description=None, amount=14.99, currency=PaymentCurrency.USD)

    assert resolve_order_plan(yearly).plan_type == PlanType.YEARLY
    assert resolve_order_plan(yearly).source == SOURCE_AMOUNT
    assert resolve_order_plan(monthly).plan_type == PlanType.MONTHLY


def test_resolve_raises_when_nothing_identifies_the_plan():
    order = PaymentOrder(order_no="O5", description="Gift card", amount=0)

    with pytest.raises(PlanClassificationError) as exc_info:
        resolve_order_plan(order)

    assert exc_info.value.order_no == "O5"
