"""Rebuilds a group's pairwise balances from its expenses and settlements.

The balance records are a cache: every mutation of a group recomputes them
from scratch and replaces what is stored. Nothing else writes them.
"""

import logging
from collections import defaultdict
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.archive import check_and_archive_if_settled
from splitledger.balances import replace_group_balances
from splitledger.errors import IntegrityFailure
from splitledger.models import Expense, Settlement
from splitledger.money import ZERO

logger = logging.getLogger(__name__)


class NetLedger:
    """Net debts between pairs of users.

    Each pair is stored once, under ``(low_id, high_id)``, with a signed amount:
    positive when the lower id owes the higher id. The directed per-user view
    is derived from it, so ``view[a][b] == -view[b][a]`` always holds.
    """

    def __init__(self):
        self._edges: dict[tuple[int, int], Decimal] = {}

    def add(self, debtor: int, creditor: int, amount: Decimal):
        """Record that ``debtor`` owes ``creditor`` ``amount`` more."""
        if debtor == creditor:
            return
        if debtor < creditor:
            key, delta = (debtor, creditor), amount
        else:
            key, delta = (creditor, debtor), -amount
        self._edges[key] = self._edges.get(key, ZERO) + delta

    def settle(self, payer: int, payee: int, amount: Decimal):
        self.add(payer, payee, -amount)

    def owed(self, debtor: int, creditor: int) -> Decimal:
        if debtor < creditor:
            return self._edges.get((debtor, creditor), ZERO)
        return -self._edges.get((creditor, debtor), ZERO)

    def users(self) -> set[int]:
        return {user_id for pair in self._edges for user_id in pair}

    def views(self) -> dict[int, dict[int, Decimal]]:
        views: dict[int, dict[int, Decimal]] = defaultdict(dict)
        for (low, high), amount in self._edges.items():
            views[low][high] = amount
            views[high][low] = -amount
        return dict(views)

    @classmethod
    def from_history(cls, expenses, settlements) -> "NetLedger":
        net = cls()
        for expense in expenses:
            for split in expense.splits:
                # the payer's own share never creates a debt
                if split.user_id == expense.paid_by or split.amount <= 0:
                    continue
                net.add(split.user_id, expense.paid_by, split.amount)
        for settlement in settlements:
            net.settle(settlement.from_user_id, settlement.to_user_id, settlement.amount)
        return net


async def recompute_group_balances(
    session: AsyncSession, group_id: int
) -> dict[int, dict[int, Decimal]]:
    """Replace the balance records of ``group_id`` with freshly netted ones.

    Runs inside the caller's transaction. A storage failure is reported as
    ``IntegrityFailure`` so the caller rolls back instead of acting on a
    half-written ledger.
    """
    try:
        expenses = (
            await session.execute(
                select(Expense).where(Expense.group_id == group_id).order_by(Expense.id)
            )
        ).scalars().all()
        settlements = (
            await session.execute(
                select(Settlement)
                .where(Settlement.group_id == group_id)
                .order_by(Settlement.id)
            )
        ).scalars().all()

        net = NetLedger.from_history(expenses, settlements)
        stored = await replace_group_balances(session, group_id, net.views())
    except SQLAlchemyError as exc:
        logger.exception("Recomputing balances for group %s failed", group_id)
        raise IntegrityFailure(
            f"Balances for group {group_id} could not be recomputed; "
            "the previous ledger state was kept"
        ) from exc

    logger.debug(
        "Recomputed group %s from %d expenses and %d settlements",
        group_id, len(expenses), len(settlements),
    )
    return stored


async def refresh_group_ledger(
    session: AsyncSession, group_id: int, acting_user_id: int
) -> bool:
    """Recompute a group's balances, then archive it if nothing is owed.

    Returns True when the group was archived.
    """
    await recompute_group_balances(session, group_id)
    return await check_and_archive_if_settled(session, group_id, acting_user_id)
