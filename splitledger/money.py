"""Money helpers shared by the split calculator and the ledger.

Amounts are ``Decimal`` values quantized to cents. The 0.01 tolerance used
for totals and pruning is a business rule: a difference below one cent is
treated as no difference at all.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from splitledger.errors import InvalidAmount

CENT = Decimal("0.01")
EPSILON = CENT
ZERO = Decimal("0.00")
MAX_AMOUNT = Decimal("10000000")


def to_money(value) -> Decimal:
    if isinstance(value, bool):
        raise InvalidAmount("Amount must be a number")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount("Amount must be a number") from None
    if not amount.is_finite():
        raise InvalidAmount("Amount must be a finite number")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_amount(value) -> Decimal:
    """Parse an expense or settlement amount and check it is in (0, MAX_AMOUNT]."""
    amount = to_money(value)
    if amount <= 0:
        raise InvalidAmount("Amount must be a positive number")
    if amount > MAX_AMOUNT:
        raise InvalidAmount("Amount is too large")
    return amount


def is_zero(amount: Decimal) -> bool:
    return abs(amount) < EPSILON


def within_epsilon(a: Decimal, b: Decimal) -> bool:
    return abs(a - b) <= EPSILON


def apportion(total: Decimal, weights: list[Decimal]) -> list[Decimal]:
    """Split ``total`` into cent amounts proportional to ``weights``.

    Uses the largest-remainder method: every part is the floor of its exact
    share in cents, and the leftover cents go to the parts with the largest
    fractional remainder (earlier weights win ties). The parts always sum to
    ``total`` exactly.
    """
    weight_sum = sum(weights, Decimal(0))
    if not weights or weight_sum <= 0:
        return [ZERO for _ in weights]

    cents = int(to_money(total) / CENT)
    exact = [Decimal(cents) * Decimal(w) / weight_sum for w in weights]
    parts = [int(share) for share in exact]

    leftover = cents - sum(parts)
    by_remainder = sorted(
        range(len(exact)), key=lambda i: exact[i] - parts[i], reverse=True
    )
    for i in by_remainder[:leftover]:
        parts[i] += 1

    return [(Decimal(part) * CENT).quantize(CENT) for part in parts]
