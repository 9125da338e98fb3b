# Overview: Pure validation and total calculation for sales order input.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from ..errors import ValidationError


# Currency minor units: amounts carry two decimal places
MONEY_QUANTUM = Decimal("0.01")
# Largest magnitude a Numeric(12, 2) column holds
MAX_MONEY = Decimal("9999999999.99")


def to_money(value) -> Decimal:
    """
    Convert a JSON number/string to a 2-place Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not the binary
    expansion. Raises ValueError for anything non-numeric and for amounts
    beyond MAX_MONEY.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError("amount must be a number")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError("amount must be a number") from exc
    if not amount.is_finite():
        raise ValueError("amount must be a finite number")
    try:
        amount = amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError("amount is out of range") from exc
    if abs(amount) > MAX_MONEY:
        raise ValueError("amount is out of range")
    return amount


def _is_positive_int(value) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value > 0
    if isinstance(value, float):
        return value.is_integer() and value > 0
    return False


def validate_order_input(data) -> list[str]:
    """
    Check an order payload and return every problem found.

    An empty list means the payload is valid. All items are inspected, so a
    caller can show the user the complete set of problems at once.
    """
    errors: list[str] = []
    if not isinstance(data, dict):
        return ["Order body must be a JSON object"]

    if not data.get("customer_id"):
        errors.append("Customer ID is required")

    items = data.get("items")
    if not isinstance(items, list) or len(items) == 0:
        errors.append("Order must contain at least one item")
        return errors

    for index, item in enumerate(items):
        if not isinstance(item, dict):
            errors.append(f"Item {index}: must be an object")
            continue
        if not item.get("product_id"):
            errors.append(f"Item {index}: Product ID is required")
        if not _is_positive_int(item.get("quantity")):
            errors.append(f"Item {index}: Quantity must be positive")
        unit_price = item.get("unit_price")
        try:
            if to_money(unit_price) < 0:
                errors.append(f"Item {index}: Unit price must be non-negative")
        except ValueError:
            errors.append(f"Item {index}: Unit price must be non-negative")

    if not errors:
        try:
            calculate_order_total(items)
        except ValueError:
            errors.append("Order total exceeds the maximum amount")

    return errors


def require_valid_order_input(data) -> None:
    errors = validate_order_input(data)
    if errors:
        raise ValidationError("Invalid order data", errors)


def calculate_order_total(items) -> Decimal:
    """
    Sum of quantity * unit_price over items, in currency minor units.

    Raises ValueError when the sum does not fit MAX_MONEY.
    """
    total = sum(
        (int(item["quantity"]) * to_money(item["unit_price"]) for item in items),
        Decimal("0"),
    )
    try:
        total = total.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError("order total is out of range") from exc
    if abs(total) > MAX_MONEY:
        raise ValueError("order total is out of range")
    return total
