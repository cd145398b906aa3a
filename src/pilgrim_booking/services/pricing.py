from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from pilgrim_booking.db.enums import CommissionType

_ZERO = Decimal("0")
_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class AgentPriceQuote:
    retail: Decimal
    wholesale: Decimal
    savings: Decimal


def coerce_amount(value: object) -> Decimal:
    """
    What it does:
    - Turns a stored/submitted price or rate into a non-negative Decimal.

    Why it matters:
    - Package prices can come back from storage as strings, and a NaN or a
      negative rate must never leak into an amount that gets charged.

    Behavior:
    - None, empty strings, unparseable values, NaN/Infinity and negatives -> 0.
    - bool is rejected (True is not a price) -> 0.
    """
    if value is None or isinstance(value, bool):
        return _ZERO

    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return _ZERO

    if not amount.is_finite() or amount < 0:
        return _ZERO
    return amount


def wholesale_price(
    retail: object,
    *,
    commission_type: CommissionType | str | None,
    rate: object,
    package_agent_discount: object = None,
) -> Decimal:
    """
    What it does:
    - Computes the price an agent-mediated booking charges.

    Behavior:
    - fixed commission: retail - rate
    - percentage with rate > 0: retail - retail * rate / 100
    - otherwise: retail - package-level flat agent discount
    - Clamped at 0 and rounded half-up to cents, so 0 <= wholesale <= retail.
    """
    retail_amount = coerce_amount(retail)
    rate_amount = coerce_amount(rate)

    if commission_type == CommissionType.FIXED:
        wholesale = retail_amount - rate_amount
    elif rate_amount > 0:
        wholesale = retail_amount - retail_amount * rate_amount / _HUNDRED
    else:
        wholesale = retail_amount - coerce_amount(package_agent_discount)

    wholesale = max(_ZERO, wholesale)
    return wholesale.quantize(_CENT, rounding=ROUND_HALF_UP)


def quote_agent_price(
    retail: object,
    *,
    commission_type: CommissionType | str | None,
    rate: object,
    package_agent_discount: object = None,
) -> AgentPriceQuote:
    retail_amount = coerce_amount(retail).quantize(_CENT, rounding=ROUND_HALF_UP)
    wholesale = wholesale_price(
        retail_amount,
        commission_type=commission_type,
        rate=rate,
        package_agent_discount=package_agent_discount,
    )
    return AgentPriceQuote(
        retail=retail_amount,
        wholesale=wholesale,
        savings=retail_amount - wholesale,
    )
