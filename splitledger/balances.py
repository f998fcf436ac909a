"""Storage and read views for the cached per-user balance records."""

import logging
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.models import Balance, BalanceEntry, utcnow
from splitledger.money import ZERO, is_zero

logger = logging.getLogger(__name__)


def _qualifying(entries: dict[int, Decimal]) -> dict[int, Decimal]:
    return {
        counterparty: amount
        for counterparty, amount in sorted(entries.items())
        if not is_zero(amount)
    }


async def group_balance_records(session: AsyncSession, group_id: int) -> list[Balance]:
    result = await session.execute(
        select(Balance).where(Balance.group_id == group_id).order_by(Balance.user_id)
    )
    return list(result.scalars().all())


async def replace_group_balances(
    session: AsyncSession, group_id: int, views: dict[int, dict[int, Decimal]]
) -> dict[int, dict[int, Decimal]]:
    """Make the stored balance records of a group equal ``views``.

    Entries under one cent are dropped and users left with nothing lose their
    record. Records that already hold the wanted entries are not touched.
    Stale records are deleted only after every live record has been flushed.
    Returns the filtered views that were persisted.
    """
    wanted = {}
    for user_id, entries in views.items():
        kept = _qualifying(entries)
        if kept:
            wanted[user_id] = kept

    existing = {record.user_id: record for record in await group_balance_records(session, group_id)}

    for user_id, entries in wanted.items():
        record = existing.get(user_id)
        if record is None:
            record = Balance(user_id=user_id, group_id=group_id)
            session.add(record)
        elif record.as_dict() == entries:
            continue
        record.entries = [
            BalanceEntry(counterparty_id=counterparty, amount=amount)
            for counterparty, amount in entries.items()
        ]
        record.updated_at = utcnow()
    await session.flush()

    stale = [record.id for user_id, record in existing.items() if user_id not in wanted]
    if stale:
        await session.execute(delete(BalanceEntry).where(BalanceEntry.balance_id.in_(stale)))
        await session.execute(delete(Balance).where(Balance.id.in_(stale)))
    logger.debug(
        "Group %s balances: %d records written, %d stale records removed",
        group_id, len(wanted), len(stale),
    )
    return wanted


async def delete_group_balances(session: AsyncSession, group_id: int):
    record_ids = select(Balance.id).where(Balance.group_id == group_id)
    await session.execute(delete(BalanceEntry).where(BalanceEntry.balance_id.in_(record_ids)))
    await session.execute(delete(Balance).where(Balance.group_id == group_id))


async def count_open_entries(session: AsyncSession, group_id: int) -> int:
    count = 0
    for record in await group_balance_records(session, group_id):
        count += sum(1 for entry in record.entries if not is_zero(entry.amount))
    return count


async def group_balance_view(session: AsyncSession, group_id: int) -> list[dict]:
    """Who owes whom in a group, one positive row per debt."""
    debts = []
    for record in await group_balance_records(session, group_id):
        for entry in record.entries:
            if entry.amount > 0 and not is_zero(entry.amount):
                debts.append(
                    {
                        "from_user_id": record.user_id,
                        "to_user_id": entry.counterparty_id,
                        "amount": entry.amount,
                    }
                )
    return debts


async def user_balance_view(
    session: AsyncSession, user_id: int, group_id: int | None = None
) -> dict:
    query = select(Balance).where(Balance.user_id == user_id)
    if group_id is not None:
        query = query.where(Balance.group_id == group_id)
    records = (await session.execute(query.order_by(Balance.group_id))).scalars().all()

    owed_to_me, i_owe = [], []
    for record in records:
        for entry in record.entries:
            if is_zero(entry.amount):
                continue
            row = {
                "group_id": record.group_id,
                "counterparty_id": entry.counterparty_id,
                "amount": abs(entry.amount),
            }
            (i_owe if entry.amount > 0 else owed_to_me).append(row)

    total_owed_to_me = sum((row["amount"] for row in owed_to_me), ZERO)
    total_i_owe = sum((row["amount"] for row in i_owe), ZERO)
    return {
        "user_id": user_id,
        "owed_to_me": owed_to_me,
        "i_owe": i_owe,
        "total_owed_to_me": total_owed_to_me,
        "total_i_owe": total_i_owe,
        "net": total_owed_to_me - total_i_owe,
    }
