import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.balances import count_open_entries, delete_group_balances
from splitledger.models import (
    Expense,
    ExpenseSplit,
    Settlement,
    SettledExpense,
    utcnow,
)

logger = logging.getLogger(__name__)


async def delete_group_expenses(session: AsyncSession, group_id: int):
    expense_ids = select(Expense.id).where(Expense.group_id == group_id)
    await session.execute(delete(ExpenseSplit).where(ExpenseSplit.expense_id.in_(expense_ids)))
    await session.execute(delete(Expense).where(Expense.group_id == group_id))


async def check_and_archive_if_settled(
    session: AsyncSession, group_id: int, acting_user_id: int
) -> bool:
    """Archive a group's expenses once every balance in it is zero.

    Snapshots are flushed before any expense is deleted. Settlement requests
    are left as they are.
    """
    open_entries = await count_open_entries(session, group_id)
    if open_entries:
        logger.info(
            "Group %s not archived: %d non-zero balances remaining", group_id, open_entries
        )
        return False

    expenses = (
        await session.execute(
            select(Expense).where(Expense.group_id == group_id).order_by(Expense.id)
        )
    ).scalars().all()

    settled_at = utcnow()
    session.add_all(
        SettledExpense(
            expense_id=expense.id,
            description=expense.description,
            amount=expense.amount,
            group_id=group_id,
            settled_by=acting_user_id,
            settled_at=settled_at,
        )
        for expense in expenses
    )
    await session.flush()

    await delete_group_expenses(session, group_id)
    await delete_group_balances(session, group_id)
    await session.execute(delete(Settlement).where(Settlement.group_id == group_id))

    logger.info(
        "Group %s fully settled: archived %d expenses (by user %s)",
        group_id, len(expenses), acting_user_id,
    )
    return True


async def list_settled_expenses(
    session: AsyncSession, user_id: int, limit: int = 10
) -> list[SettledExpense]:
    result = await session.execute(
        select(SettledExpense)
        .where(SettledExpense.settled_by == user_id)
        .order_by(SettledExpense.settled_at.desc(), SettledExpense.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
