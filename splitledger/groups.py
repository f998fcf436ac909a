import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.archive import delete_group_expenses
from splitledger.balances import delete_group_balances
from splitledger.errors import AuthorizationError, NotFoundError, ValidationError
from splitledger.ledger import refresh_group_ledger
from splitledger.locks import group_locks, ledger_mutation
from splitledger.models import (
    Group,
    GroupMember,
    SettledExpense,
    Settlement,
    SettlementRequest,
    User,
)

logger = logging.getLogger(__name__)


async def get_user(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User with ID {user_id} not found")
    return user


async def get_group(session: AsyncSession, group_id: int) -> Group:
    group = await session.get(Group, group_id)
    if group is None:
        raise NotFoundError("Group not found")
    return group


def ensure_member(group: Group, user_id: int):
    if user_id not in group.member_ids:
        raise AuthorizationError("Not authorized for this group")


def ensure_creator(group: Group, user_id: int, action: str):
    if group.created_by != user_id:
        raise AuthorizationError(f"Only the creator can {action}")


async def get_group_for_member(session: AsyncSession, group_id: int, user_id: int) -> Group:
    group = await get_group(session, group_id)
    ensure_member(group, user_id)
    return group


async def create_group(
    session: AsyncSession, name: str, creator_id: int, member_ids: list[int]
) -> Group:
    if not name or not name.strip():
        raise ValidationError("Group name cannot be empty")

    await get_user(session, creator_id)
    for member_id in member_ids:
        await get_user(session, member_id)

    # creator first, duplicates dropped
    all_members = list(dict.fromkeys([creator_id, *member_ids]))
    group = Group(
        name=name.strip(),
        created_by=creator_id,
        members=[GroupMember(user_id=user_id) for user_id in all_members],
    )
    session.add(group)
    await session.commit()
    logger.info("Group %s created by user %s with %d members", group.id, creator_id, len(all_members))
    return group


async def list_user_groups(session: AsyncSession, user_id: int) -> list[Group]:
    result = await session.execute(
        select(Group)
        .join(GroupMember, GroupMember.group_id == Group.id)
        .where(GroupMember.user_id == user_id)
        .order_by(Group.id)
    )
    return list(result.scalars().all())


async def list_members(session: AsyncSession, group_id: int, user_id: int) -> list[User]:
    group = await get_group_for_member(session, group_id, user_id)
    result = await session.execute(
        select(User)
        .join(GroupMember, GroupMember.user_id == User.id)
        .where(GroupMember.group_id == group.id)
        .order_by(GroupMember.id)
    )
    return list(result.scalars().all())


async def add_member(session: AsyncSession, group_id: int, user_id: int, acting_user_id: int) -> Group:
    async with group_locks.hold(group_id):
        group = await get_group(session, group_id)
        ensure_creator(group, acting_user_id, "add members")
        await get_user(session, user_id)

        if user_id not in group.member_ids:
            group.members.append(GroupMember(user_id=user_id))
            await session.commit()
            logger.info("User %s added to group %s", user_id, group_id)
    return group


async def remove_member(
    session: AsyncSession, group_id: int, user_id: int, acting_user_id: int
) -> Group:
    """Drop a member and rebuild the group's ledger.

    Debts the member already has stay in the ledger: they come from expenses
    and settlements that are still part of the group's history.
    """
    async with ledger_mutation(session, group_id):
        group = await get_group(session, group_id)
        ensure_creator(group, acting_user_id, "remove members")
        if user_id == group.created_by:
            raise ValidationError("The group creator cannot be removed")
        if user_id not in group.member_ids:
            raise NotFoundError("User is not a member of this group")

        group.members = [member for member in group.members if member.user_id != user_id]
        await session.flush()
        await refresh_group_ledger(session, group_id, acting_user_id)
    logger.info("User %s removed from group %s", user_id, group_id)
    return group


async def delete_group(session: AsyncSession, group_id: int, acting_user_id: int):
    """Delete a group together with every ledger row that references it."""
    async with ledger_mutation(session, group_id):
        group = await get_group(session, group_id)
        ensure_creator(group, acting_user_id, "delete")

        await delete_group_expenses(session, group_id)
        await delete_group_balances(session, group_id)
        for model in (SettlementRequest, Settlement, SettledExpense):
            await session.execute(delete(model).where(model.group_id == group_id))
        await session.delete(group)
    logger.info("Group %s deleted by user %s", group_id, acting_user_id)
