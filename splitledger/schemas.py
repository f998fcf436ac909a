from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from splitledger.splits import SplitType


class UserCreate(BaseModel):
    name: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class GroupCreate(BaseModel):
    name: str
    user_ids: list[int] = Field(default_factory=list)


class MemberAdd(BaseModel):
    user_id: int


class GroupOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    created_by: int
    member_ids: list[int]
    created_at: datetime


class ExpenseObject(BaseModel):
    user_id: int
    percentage: Decimal | None = None
    amount: Decimal | None = None


class ExpenseCreate(BaseModel):
    group_id: int
    amount: Decimal
    description: str

    split_type: str
    splits: list[ExpenseObject] | None = (
        None  # "percentage": user_id + percentage, "exact": user_id + amount
    )
    paid_by: int

    def rule_input(self) -> list[tuple[int, Decimal | None]] | None:
        if self.splits is None:
            return None
        if self.split_type == SplitType.percentage.value:
            return [(split.user_id, split.percentage or Decimal(0)) for split in self.splits]
        return [(split.user_id, split.amount or Decimal(0)) for split in self.splits]


class SplitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    amount: Decimal


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    group_id: int
    description: str
    amount: Decimal
    paid_by: int
    split_type: str
    splits: list[SplitOut]
    created_at: datetime


class ExpenseCreated(BaseModel):
    expense: ExpenseOut
    archived: bool


class SettleRequest(BaseModel):
    group_id: int
    from_user_id: int
    to_user_id: int
    amount: Decimal


class SettlementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    group_id: int
    from_user_id: int
    to_user_id: int
    amount: Decimal
    settled_by: int
    settled_at: datetime


class DebtOut(BaseModel):
    from_user_id: int
    to_user_id: int
    amount: Decimal


class SettleResult(BaseModel):
    message: str
    settlement: SettlementOut
    archived: bool
    balances: list[DebtOut]


class SettlementRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    group_id: int
    from_user_id: int
    to_user_id: int
    amount: Decimal
    status: str
    created_at: datetime
    resolved_by: int | None = None
    resolved_at: datetime | None = None


class RequestResolution(BaseModel):
    message: str
    request: SettlementRequestOut
    archived: bool = False
    balances: list[DebtOut] = Field(default_factory=list)


class CounterpartyBalance(BaseModel):
    group_id: int
    counterparty_id: int
    amount: Decimal


class UserBalances(BaseModel):
    user_id: int
    owed_to_me: list[CounterpartyBalance]
    i_owe: list[CounterpartyBalance]
    total_owed_to_me: Decimal
    total_i_owe: Decimal
    net: Decimal


class GroupBalances(BaseModel):
    group_id: int
    balances: list[DebtOut]


class SettledExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    expense_id: int
    description: str
    amount: Decimal
    group_id: int
    settled_by: int
    settled_at: datetime


RequestRole = Literal["incoming", "outgoing", "all"]
