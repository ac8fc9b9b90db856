class PlanClassificationError(ValueError):
    """Order carries no plan code, no classifiable description and no usable amount."""

    def __init__(self, order_no: str, description: str | None = None):
        self.order_no = order_no
        self.description = description
        super().__init__(f"Cannot determine plan type for order {order_no} (description={description!r})")


class OrderTimestampError(ValueError):
    """Order has none of paid_at / updated_at / created_at."""

    def __init__(self, order_no: str):
        self.order_no = order_no
        super().__init__(f"Order {order_no} has no paid_at, updated_at or created_at")
