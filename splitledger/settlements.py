"""Direct settlements and the request → approve/reject workflow.

A request starts ``pending`` and is resolved once, by its recipient. Approving
it records a Settlement exactly like a direct settlement does, so both paths
end in the same ledger state.
"""

import logging
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.errors import (
    AuthorizationError,
    DuplicatePendingRequest,
    InvalidParticipant,
    NotFoundError,
    ValidationError,
)
from splitledger.groups import get_group
from splitledger.ledger import refresh_group_ledger
from splitledger.locks import group_locks, ledger_mutation
from splitledger.models import RequestStatus, Settlement, SettlementRequest, utcnow
from splitledger.money import validate_amount

logger = logging.getLogger(__name__)


async def _validate_parties(
    session: AsyncSession, group_id: int, from_user_id: int, to_user_id: int, amount
) -> Decimal:
    if from_user_id is None or to_user_id is None or amount is None or group_id is None:
        raise ValidationError("fromUserId, toUserId, amount, and groupId are required")
    amount = validate_amount(amount)
    if from_user_id == to_user_id:
        raise ValidationError("Cannot settle a balance with yourself")

    group = await get_group(session, group_id)
    members = group.member_ids
    if from_user_id not in members or to_user_id not in members:
        raise InvalidParticipant("Both users must be members of the group")
    return amount


async def _record_settlement(
    session: AsyncSession,
    group_id: int,
    from_user_id: int,
    to_user_id: int,
    amount: Decimal,
    settled_by: int,
) -> tuple[Settlement, bool]:
    settlement = Settlement(
        group_id=group_id,
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        amount=amount,
        settled_by=settled_by,
        settled_at=utcnow(),
    )
    session.add(settlement)
    await session.flush()
    archived = await refresh_group_ledger(session, group_id, settled_by)
    logger.info(
        "Settlement %s: user %s paid user %s %s in group %s",
        settlement.id, from_user_id, to_user_id, amount, group_id,
    )
    return settlement, archived


async def settle(
    session: AsyncSession,
    group_id: int,
    from_user_id: int,
    to_user_id: int,
    amount,
    acting_user_id: int,
) -> tuple[Settlement, bool]:
    """Record a payment straight away, without asking the recipient."""
    async with ledger_mutation(session, group_id):
        amount = await _validate_parties(session, group_id, from_user_id, to_user_id, amount)
        if acting_user_id not in (from_user_id, to_user_id):
            raise AuthorizationError("Only the payer or the recipient can record a settlement")
        settlement, archived = await _record_settlement(
            session, group_id, from_user_id, to_user_id, amount, acting_user_id
        )
    return settlement, archived


async def create_request(
    session: AsyncSession,
    group_id: int,
    from_user_id: int,
    to_user_id: int,
    amount,
    acting_user_id: int,
) -> SettlementRequest:
    if acting_user_id != from_user_id:
        raise AuthorizationError("You can only create settlement requests for your own balances")

    async with group_locks.hold(group_id):
        amount = await _validate_parties(session, group_id, from_user_id, to_user_id, amount)

        # only the same direction counts; a reverse pending request is allowed
        existing = await session.execute(
            select(SettlementRequest.id).where(
                SettlementRequest.from_user_id == from_user_id,
                SettlementRequest.to_user_id == to_user_id,
                SettlementRequest.group_id == group_id,
                SettlementRequest.status == RequestStatus.pending,
            )
        )
        if existing.first() is not None:
            raise DuplicatePendingRequest(
                "A pending settlement request already exists for this balance"
            )

        request = SettlementRequest(
            group_id=group_id,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            amount=amount,
            status=RequestStatus.pending,
            created_at=utcnow(),
        )
        session.add(request)
        await session.commit()

    logger.info(
        "Settlement request %s created: user %s -> user %s, %s in group %s",
        request.id, from_user_id, to_user_id, amount, group_id,
    )
    return request


async def get_request(session: AsyncSession, request_id: int) -> SettlementRequest:
    request = await session.get(SettlementRequest, request_id, populate_existing=True)
    if request is None:
        raise NotFoundError("Settlement request not found")
    return request


async def approve_request(
    session: AsyncSession, request_id: int, acting_user_id: int
) -> tuple[SettlementRequest, bool]:
    request = await get_request(session, request_id)
    group_id = request.group_id

    async with ledger_mutation(session, group_id):
        request = await get_request(session, request_id)
        request.resolve(RequestStatus.approved, acting_user_id)
        _, archived = await _record_settlement(
            session,
            group_id,
            request.from_user_id,
            request.to_user_id,
            request.amount,
            acting_user_id,
        )

    logger.info("Settlement request %s approved by user %s", request_id, acting_user_id)
    return request, archived


async def reject_request(
    session: AsyncSession, request_id: int, acting_user_id: int
) -> SettlementRequest:
    request = await get_request(session, request_id)

    async with group_locks.hold(request.group_id):
        request = await get_request(session, request_id)
        request.resolve(RequestStatus.rejected, acting_user_id)
        await session.commit()

    logger.info("Settlement request %s rejected by user %s", request_id, acting_user_id)
    return request


async def list_requests(
    session: AsyncSession, user_id: int, role: str = "incoming", limit: int = 50
) -> list[SettlementRequest]:
    query = select(SettlementRequest)
    if role == "incoming":
        query = query.where(SettlementRequest.to_user_id == user_id)
    elif role == "outgoing":
        query = query.where(SettlementRequest.from_user_id == user_id)
    else:
        query = query.where(
            or_(
                SettlementRequest.to_user_id == user_id,
                SettlementRequest.from_user_id == user_id,
            )
        )
    result = await session.execute(
        query.order_by(SettlementRequest.created_at.desc(), SettlementRequest.id.desc()).limit(limit)
    )
    return list(result.scalars().all())
