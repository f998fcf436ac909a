import logging
from contextlib import asynccontextmanager
from os import getenv

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from splitledger import archive, balances, expenses, groups, settlements
from splitledger.database import engine, get_session
from splitledger.errors import AuthorizationError, LedgerError
from splitledger.models import DatabaseSchemaBase, User
from splitledger.schemas import (
    ExpenseCreate,
    ExpenseCreated,
    ExpenseOut,
    GroupBalances,
    GroupCreate,
    GroupOut,
    MemberAdd,
    RequestResolution,
    RequestRole,
    SettledExpenseOut,
    SettleRequest,
    SettleResult,
    SettlementRequestOut,
    UserBalances,
    UserCreate,
    UserOut,
)

LOG_LEVEL = getenv("LOG_LEVEL", "INFO").upper()

logger = logging.getLogger("splitledger")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    async with engine.begin() as conn:
        await conn.run_sync(DatabaseSchemaBase.metadata.create_all)
    yield


app = FastAPI(title="splitledger", lifespan=lifespan)


async def current_user_id(x_user_id: int = Header(...)) -> int:
    return x_user_id


@app.exception_handler(LedgerError)
async def ledger_exception_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)

    return JSONResponse(
        status_code=500,
        content={"message": f"An unexpected error occurred: {str(exc)}"},
    )


@app.get("/")
async def root():
    return {"message": "Visit /docs for API documentation"}


@app.get("/health")
async def health(session: AsyncSession = Depends(get_session)):
    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("Health check failed: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"status": "degraded", "database": "unreachable"},
        )
    return {"status": "ok", "database": "reachable"}


# Users


@app.post("/users/", response_model=UserOut, status_code=201)
async def create_user(user: UserCreate, session: AsyncSession = Depends(get_session)):
    new_user = User(name=user.name)
    session.add(new_user)
    await session.commit()
    await session.refresh(new_user)
    return new_user


@app.get("/users/", response_model=list[UserOut])
async def list_users(session: AsyncSession = Depends(get_session)):
    result = await session.execute(select(User).order_by(User.id))
    return result.scalars().all()


@app.get("/users/{user_id}", response_model=UserOut)
async def get_user(user_id: int, session: AsyncSession = Depends(get_session)):
    return await groups.get_user(session, user_id)


# Groups


@app.post("/groups/", response_model=GroupOut, status_code=201)
async def create_group(
    group: GroupCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    return await groups.create_group(session, group.name, user_id, group.user_ids)


@app.get("/groups/", response_model=list[GroupOut])
async def list_groups(
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    return await groups.list_user_groups(session, user_id)


@app.get("/groups/{group_id}", response_model=GroupOut)
async def get_group(
    group_id: int,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    return await groups.get_group_for_member(session, group_id, user_id)


@app.delete("/groups/{group_id}")
async def delete_group(
    group_id: int,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    await groups.delete_group(session, group_id, user_id)
    return {"message": "Group deleted successfully"}


@app.get("/groups/{group_id}/members/", response_model=list[UserOut])
async def get_group_members(
    group_id: int,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    return await groups.list_members(session, group_id, user_id)


@app.post("/groups/{group_id}/members/", response_model=GroupOut)
async def add_member(
    group_id: int,
    member: MemberAdd,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    return await groups.add_member(session, group_id, member.user_id, user_id)


@app.delete("/groups/{group_id}/members/{member_id}", response_model=GroupOut)
async def remove_member(
    group_id: int,
    member_id: int,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    return await groups.remove_member(session, group_id, member_id, user_id)


# Expenses


@app.post("/expenses/", response_model=ExpenseCreated, status_code=201)
async def add_expense(
    expense: ExpenseCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    new_expense, archived = await expenses.create_expense(
        session,
        group_id=expense.group_id,
        description=expense.description,
        amount=expense.amount,
        paid_by=expense.paid_by,
        split_type=expense.split_type,
        splits=expense.rule_input(),
        acting_user_id=user_id,
    )
    return {"expense": new_expense, "archived": archived}


@app.get("/expenses/", response_model=list[ExpenseOut])
async def list_expenses(
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    return await expenses.list_user_expenses(session, user_id)


@app.get("/expenses/{expense_id}", response_model=ExpenseOut)
async def get_expense(
    expense_id: int,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    return await expenses.get_expense(session, expense_id, user_id)


@app.delete("/expenses/{expense_id}")
async def delete_expense(
    expense_id: int,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    archived = await expenses.delete_expense(session, expense_id, user_id)
    return {"message": "Expense deleted successfully", "archived": archived}


@app.get("/groups/{group_id}/expenses/", response_model=list[ExpenseOut])
async def get_group_expenses(
    group_id: int,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    return await expenses.list_group_expenses(session, group_id, user_id)


# Balances and settlements


@app.get("/groups/{group_id}/balances/", response_model=GroupBalances)
async def get_group_balances(
    group_id: int,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    await groups.get_group_for_member(session, group_id, user_id)
    debts = await balances.group_balance_view(session, group_id)
    return {"group_id": group_id, "balances": debts}


@app.get("/users/{balance_user_id}/balances/", response_model=UserBalances)
async def get_user_balances(
    balance_user_id: int,
    group_id: int | None = None,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    if balance_user_id != user_id:
        raise AuthorizationError("Forbidden")
    return await balances.user_balance_view(session, user_id, group_id)


@app.post("/balances/settle", response_model=SettleResult)
async def settle_balance(
    body: SettleRequest,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    settlement, archived = await settlements.settle(
        session, body.group_id, body.from_user_id, body.to_user_id, body.amount, user_id
    )
    return {
        "message": "Balance settled successfully",
        "settlement": settlement,
        "archived": archived,
        "balances": await balances.group_balance_view(session, body.group_id),
    }


@app.get("/balances/settled/", response_model=list[SettledExpenseOut])
async def get_settled_expenses(
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    return await archive.list_settled_expenses(session, user_id)


@app.get("/settlement-requests/", response_model=list[SettlementRequestOut])
async def get_settlement_requests(
    role: RequestRole = "incoming",
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    return await settlements.list_requests(session, user_id, role)


@app.post("/settlement-requests/", response_model=SettlementRequestOut, status_code=201)
async def create_settlement_request(
    body: SettleRequest,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    return await settlements.create_request(
        session, body.group_id, body.from_user_id, body.to_user_id, body.amount, user_id
    )


@app.post("/settlement-requests/{request_id}/approve", response_model=RequestResolution)
async def approve_settlement_request(
    request_id: int,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    request, archived = await settlements.approve_request(session, request_id, user_id)
    return {
        "message": "Settlement approved",
        "request": request,
        "archived": archived,
        "balances": await balances.group_balance_view(session, request.group_id),
    }


@app.post("/settlement-requests/{request_id}/reject", response_model=RequestResolution)
async def reject_settlement_request(
    request_id: int,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
):
    request = await settlements.reject_request(session, request_id, user_id)
    return {"message": "Settlement rejected", "request": request}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "splitledger.main:app",
        host=getenv("HOST", "0.0.0.0"),
        port=int(getenv("PORT", "8000")),
        reload=True,
    )
