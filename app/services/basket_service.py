"""Build the priced basket sent to the gateway.

Amounts are converted to integer minor units before summing so the basket
total can be compared exactly with the booking total.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP

from app.core.errors import BasketMismatchError, InvalidBasketError
from app.schemas.payments import BasketBreakdown, PriceComponent
from app.services.gateway import BasketLine

logger = logging.getLogger("app.payrexx.basket")

# Drift the gateway's whole-unit rounding is known to introduce; absorbed silently.
MAX_ABSORBED_DRIFT = 10


def to_minor(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _charge_line(component: PriceComponent) -> BasketLine:
    if component.price < 0:
        raise InvalidBasketError(f"Negative amount for basket component {component.name!r}")
    return BasketLine(name=component.name, quantity=component.quantity, amount=to_minor(component.price))


def _discount_line(component: PriceComponent) -> BasketLine:
    # Reductions and bonuses arrive signed either way; they always lower the total.
    return BasketLine(name=component.name, quantity=component.quantity, amount=-abs(to_minor(component.price)))


def build_basket(breakdown: BasketBreakdown | dict) -> list[BasketLine]:
    """Return basket lines whose amounts sum to price_total in minor units.

    A drift of 1..MAX_ABSORBED_DRIFT minor units is folded into the first line;
    anything larger raises BasketMismatchError.
    """
    if isinstance(breakdown, dict):
        breakdown = BasketBreakdown.model_validate(breakdown)
    if breakdown.price_total is None or breakdown.price_total <= 0:
        raise InvalidBasketError("Basket has no price_total")

    lines: list[BasketLine] = []
    if breakdown.price_base:
        lines.append(_charge_line(breakdown.price_base))
    if breakdown.reduction:
        lines.append(_discount_line(breakdown.reduction))
    for component in (breakdown.tva, breakdown.boukii_care, breakdown.cancellation_insurance):
        if component:
            lines.append(_charge_line(component))
    for extra in breakdown.extras.extras:
        lines.append(_charge_line(extra))
    for bonus in breakdown.bonus.bonuses:
        lines.append(_discount_line(bonus))

    if not lines:
        raise InvalidBasketError("Basket is empty")

    expected = to_minor(breakdown.price_total)
    actual = sum(line.amount for line in lines)
    drift = expected - actual
    if drift == 0:
        return lines
    if abs(drift) <= MAX_ABSORBED_DRIFT:
        logger.info("absorbing basket drift", extra={"drift": drift, "first_line": lines[0].name})
        lines[0].amount += drift
        return lines
    raise BasketMismatchError(expected, actual)


def basket_total(lines: list[BasketLine]) -> int:
    return sum(line.amount for line in lines)


def payment_summary(lines: list[BasketLine], currency: str) -> tuple[str, str]:
    """Title and one-line-per-item description shown on the hosted payment page."""
    description = "\n".join(
        f"{line.name} - Quantity: {line.quantity} - Price: {Decimal(line.amount) / 100:.2f} {currency}"
        for line in lines
    )
    return "Payment", description
