import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.errors import NotFoundError, ValidationError
from splitledger.groups import ensure_member, get_group, get_group_for_member
from splitledger.ledger import refresh_group_ledger
from splitledger.locks import ledger_mutation
from splitledger.models import Expense, ExpenseSplit, GroupMember
from splitledger.money import validate_amount
from splitledger.splits import SplitType, compute_splits

logger = logging.getLogger(__name__)


async def create_expense(
    session: AsyncSession,
    group_id: int,
    description: str,
    amount,
    paid_by: int,
    split_type,
    splits: list[tuple[int, object]] | None,
    acting_user_id: int,
) -> tuple[Expense, bool]:
    """Record an expense and rebuild the group's balances.

    Returns the expense and whether the group ended up archived.
    """
    if not isinstance(description, str) or not description.strip():
        raise ValidationError("Description cannot be empty")

    async with ledger_mutation(session, group_id):
        group = await get_group(session, group_id)
        ensure_member(group, acting_user_id)

        computed = compute_splits(
            amount, split_type, group.member_ids, rule_input=splits, payer=paid_by
        )
        expense = Expense(
            group_id=group_id,
            description=description.strip(),
            amount=validate_amount(amount),
            paid_by=paid_by,
            split_type=SplitType(split_type).value,
            splits=[ExpenseSplit(user_id=s.user_id, amount=s.amount) for s in computed],
        )
        session.add(expense)
        await session.flush()

        archived = await refresh_group_ledger(session, group_id, acting_user_id)

    logger.info(
        "Expense %s (%s) added to group %s by user %s",
        expense.id, expense.amount, group_id, acting_user_id,
    )
    return expense, archived


async def get_expense(session: AsyncSession, expense_id: int, acting_user_id: int) -> Expense:
    expense = await session.get(Expense, expense_id)
    if expense is None:
        raise NotFoundError("Expense not found")
    await get_group_for_member(session, expense.group_id, acting_user_id)
    return expense


async def delete_expense(session: AsyncSession, expense_id: int, acting_user_id: int) -> bool:
    """Delete an expense and rebuild the group's balances.

    Returns whether the group ended up archived.
    """
    expense = await get_expense(session, expense_id, acting_user_id)
    group_id = expense.group_id

    async with ledger_mutation(session, group_id):
        # re-read under the lock; another request may have removed it meanwhile
        expense = await session.get(Expense, expense_id, populate_existing=True)
        if expense is None:
            raise NotFoundError("Expense not found")
        await session.delete(expense)
        await session.flush()
        archived = await refresh_group_ledger(session, group_id, acting_user_id)

    logger.info("Expense %s deleted from group %s by user %s", expense_id, group_id, acting_user_id)
    return archived


async def list_group_expenses(
    session: AsyncSession, group_id: int, acting_user_id: int
) -> list[Expense]:
    await get_group_for_member(session, group_id, acting_user_id)
    result = await session.execute(
        select(Expense).where(Expense.group_id == group_id).order_by(Expense.id)
    )
    return list(result.scalars().all())


async def list_user_expenses(session: AsyncSession, user_id: int) -> list[Expense]:
    group_ids = select(GroupMember.group_id).where(GroupMember.user_id == user_id)
    result = await session.execute(
        select(Expense).where(Expense.group_id.in_(group_ids)).order_by(Expense.id)
    )
    return list(result.scalars().all())
