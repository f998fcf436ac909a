from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.schema import UniqueConstraint

from splitledger.errors import AlreadyResolved, AuthorizationError

DatabaseSchemaBase = declarative_base()

Money = Numeric(12, 2, asdecimal=True)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(DatabaseSchemaBase):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)


class Group(DatabaseSchemaBase):
    __tablename__ = "groups"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    members = relationship(
        "GroupMember",
        lazy="selectin",
        order_by="GroupMember.id",
        cascade="all, delete-orphan",
    )

    @property
    def member_ids(self) -> list[int]:
        return [member.user_id for member in self.members]


class GroupMember(DatabaseSchemaBase):
    __tablename__ = "group_members"
    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    __table_args__ = (UniqueConstraint("group_id", "user_id", name="_group_user_uc"),)


class Expense(DatabaseSchemaBase):
    __tablename__ = "expenses"
    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    description = Column(String, nullable=False)
    paid_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    split_type = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    splits = relationship(
        "ExpenseSplit",
        lazy="selectin",
        order_by="ExpenseSplit.id",
        cascade="all, delete-orphan",
    )


class ExpenseSplit(DatabaseSchemaBase):
    __tablename__ = "expense_splits"
    id = Column(Integer, primary_key=True, index=True)
    expense_id = Column(Integer, ForeignKey("expenses.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount = Column(Money, nullable=False)


class Settlement(DatabaseSchemaBase):
    __tablename__ = "settlements"
    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    from_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    to_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount = Column(Money, nullable=False)
    settled_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    settled_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class RequestStatus:
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class SettlementRequest(DatabaseSchemaBase):
    __tablename__ = "settlement_requests"
    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    from_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    to_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount = Column(Money, nullable=False)
    status = Column(String, nullable=False, default=RequestStatus.pending)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    resolved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    def ensure_pending(self):
        if self.status != RequestStatus.pending:
            raise AlreadyResolved("Request is already resolved")

    def ensure_recipient(self, user_id: int, action: str = "approve"):
        if self.to_user_id != user_id:
            raise AuthorizationError(f"Only the recipient can {action}")

    def resolve(self, status: str, user_id: int):
        self.ensure_pending()
        self.ensure_recipient(
            user_id, "approve" if status == RequestStatus.approved else "reject"
        )
        self.status = status
        self.resolved_by = user_id
        self.resolved_at = utcnow()


class Balance(DatabaseSchemaBase):
    """Cached net position of one user inside one group.

    Rows are written only by the ledger recompute; each entry is what
    ``user_id`` owes ``counterparty_id`` (negative when the counterparty owes).
    """

    __tablename__ = "balances"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    entries = relationship(
        "BalanceEntry",
        lazy="selectin",
        order_by="BalanceEntry.counterparty_id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (UniqueConstraint("user_id", "group_id", name="_balance_user_group_uc"),)

    def as_dict(self) -> dict:
        return {entry.counterparty_id: entry.amount for entry in self.entries}


class BalanceEntry(DatabaseSchemaBase):
    __tablename__ = "balance_entries"
    id = Column(Integer, primary_key=True, autoincrement=True)
    balance_id = Column(Integer, ForeignKey("balances.id"), nullable=False, index=True)
    counterparty_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount = Column(Money, nullable=False)


class SettledExpense(DatabaseSchemaBase):
    __tablename__ = "settled_expenses"
    id = Column(Integer, primary_key=True, index=True)
    expense_id = Column(Integer, nullable=False)
    description = Column(String, nullable=False)
    amount = Column(Money, nullable=False)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    settled_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    settled_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
