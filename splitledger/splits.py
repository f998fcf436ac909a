from decimal import Decimal
from enum import Enum
from typing import Iterable, NamedTuple

from splitledger.errors import (
    EmptyGroup,
    InvalidParticipant,
    InvalidSplitRule,
    PercentageBelow100,
    PercentageExceeds100,
    SplitBelowAmount,
    SplitExceedsAmount,
    ValidationError,
)
from splitledger.money import apportion, to_money, validate_amount, within_epsilon

HUNDRED = Decimal(100)


class SplitType(str, Enum):
    equal = "equal"
    exact = "exact"
    percentage = "percentage"


class Split(NamedTuple):
    user_id: int
    amount: Decimal


def compute_splits(
    amount,
    rule,
    participants: Iterable[int],
    rule_input: Iterable[tuple[int, object]] | None = None,
    payer: int | None = None,
) -> list[Split]:
    """Work out what each member owes for an expense.

    ``participants`` is the group's member list, in membership order.
    ``rule_input`` holds ``(member, value)`` pairs: percentages for the
    ``percentage`` rule, owed amounts for ``exact``; ``equal`` ignores it.
    Raises a ``ValidationError`` subclass instead of adjusting bad input.
    """
    amount = validate_amount(amount)
    members = list(dict.fromkeys(participants))

    try:
        rule = SplitType(rule)
    except ValueError:
        raise InvalidSplitRule(
            "Invalid split type. Must be 'equal', 'exact', or 'percentage'"
        ) from None

    if payer is not None and payer not in members:
        raise InvalidParticipant("Payer must be a group member")

    if rule == SplitType.equal:
        splits = _equal(amount, members)
    elif rule == SplitType.percentage:
        splits = _percentage(amount, members, _entries(rule_input, rule))
    else:
        splits = _exact(amount, members, _entries(rule_input, rule))

    if not splits:
        raise ValidationError("Expense must have at least one split")
    total = sum((split.amount for split in splits), Decimal(0))
    if not within_epsilon(total, amount):
        raise ValidationError(
            f"Total split ({total:.2f}) does not match amount ({amount:.2f})"
        )
    return splits


def _entries(rule_input, rule: SplitType) -> list[tuple[int, object]]:
    entries = list(rule_input or [])
    if not entries:
        raise ValidationError(f"Splits array is required for {rule.value} split")
    return entries


def _check_members(entries, members: list[int]) -> None:
    seen = set()
    for user_id, _ in entries:
        if user_id not in members:
            raise InvalidParticipant("All split users must be group members")
        if user_id in seen:
            raise InvalidParticipant("Each member may appear only once in splits")
        seen.add(user_id)


def _equal(amount: Decimal, members: list[int]) -> list[Split]:
    if not members:
        raise EmptyGroup("Group must have at least one member")
    shares = apportion(amount, [Decimal(1)] * len(members))
    return [Split(user_id, share) for user_id, share in zip(members, shares) if share > 0]


def _percentage(amount: Decimal, members: list[int], entries) -> list[Split]:
    _check_members(entries, members)

    percentages = []
    for _, value in entries:
        try:
            percentage = Decimal(str(value))
        except ArithmeticError:
            raise ValidationError("Percentages must be non-negative numbers") from None
        if not percentage.is_finite() or percentage < 0:
            raise ValidationError("Percentages must be non-negative numbers")
        if percentage > HUNDRED:
            raise ValidationError("Individual percentage cannot exceed 100%")
        percentages.append(percentage)

    total = sum(percentages, Decimal(0))
    if not within_epsilon(total, HUNDRED):
        if total > HUNDRED:
            raise PercentageExceeds100(f"Total percentage ({total:.1f}%) exceeds 100%")
        raise PercentageBelow100(
            f"Total percentage ({total:.1f}%) is less than 100%. Total must equal 100%"
        )

    # totals within a cent of 100% are scaled onto the full amount
    shares = apportion(amount, percentages)
    return [
        Split(user_id, share)
        for (user_id, _), share in zip(entries, shares)
        if share > 0
    ]


def _exact(amount: Decimal, members: list[int], entries) -> list[Split]:
    _check_members(entries, members)

    splits = []
    for user_id, value in entries:
        share = to_money(value)
        if share < 0:
            raise ValidationError("Split amounts must be non-negative numbers")
        if share > 0:
            splits.append(Split(user_id, share))

    total = sum((split.amount for split in splits), Decimal(0))
    if not within_epsilon(total, amount):
        if total > amount:
            raise SplitExceedsAmount(
                f"Total split ({total:.2f}) exceeds amount ({amount:.2f})"
            )
        raise SplitBelowAmount(
            f"Total split ({total:.2f}) is less than amount ({amount:.2f}). "
            "Total must equal the expense amount"
        )
    return splits
