from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from splitledger import expenses, ledger, settlements
from splitledger.errors import IntegrityFailure
from splitledger.ledger import NetLedger, recompute_group_balances
from splitledger.models import Balance, BalanceEntry, Settlement


def _expense(paid_by, *splits):
    return SimpleNamespace(
        paid_by=paid_by,
        splits=[SimpleNamespace(user_id=u, amount=Decimal(a)) for u, a in splits],
    )


async def _equal_expense(session, group, payer, amount, actor=None):
    expense, _ = await expenses.create_expense(
        session,
        group_id=group.id,
        description="Dinner",
        amount=amount,
        paid_by=payer,
        split_type="equal",
        splits=None,
        acting_user_id=actor or payer,
    )
    return expense


# ═══════════════════════════════════════════════════════════════════════════
# NetLedger
# ═══════════════════════════════════════════════════════════════════════════

class TestNetLedger:

    def test_directions_are_mirrored(self):
        net = NetLedger()
        net.add(3, 1, Decimal("30"))
        assert net.owed(3, 1) == Decimal("30")
        assert net.owed(1, 3) == Decimal("-30")
        assert net.views() == {3: {1: Decimal("30")}, 1: {3: Decimal("-30")}}

    def test_opposite_debts_net_out(self):
        net = NetLedger()
        net.add(1, 2, Decimal("25"))
        net.add(2, 1, Decimal("10"))
        assert net.owed(1, 2) == Decimal("15")

    def test_settlement_reduces_debt_and_can_flip_it(self):
        net = NetLedger()
        net.add(2, 1, Decimal("30"))
        net.settle(2, 1, Decimal("30"))
        assert net.owed(2, 1) == 0
        net.settle(2, 1, Decimal("5"))
        assert net.owed(1, 2) == Decimal("5")

    def test_self_debt_is_ignored(self):
        net = NetLedger()
        net.add(4, 4, Decimal("10"))
        assert net.views() == {}

    def test_from_history_skips_payers_own_share(self):
        net = NetLedger.from_history(
            [_expense(1, (1, "30"), (2, "30"), (3, "30"))],
            [SimpleNamespace(from_user_id=2, to_user_id=1, amount=Decimal("10"))],
        )
        assert net.owed(2, 1) == Decimal("20")
        assert net.owed(3, 1) == Decimal("30")
        assert net.users() == {1, 2, 3}
        assert 1 not in net.views()[1]

    def test_views_always_conserve(self):
        net = NetLedger.from_history(
            [
                _expense(1, (2, "10.10"), (3, "7.77")),
                _expense(2, (1, "3.33"), (3, "99.99")),
                _expense(3, (1, "0.01"), (2, "45")),
            ],
            [],
        )
        total = sum(amount for entries in net.views().values() for amount in entries.values())
        assert total == 0


# ═══════════════════════════════════════════════════════════════════════════
# Recompute against the database
# ═══════════════════════════════════════════════════════════════════════════

class TestRecompute:

    async def test_equal_split_scenario(self, session, people, trip, read_ledger):
        """Alice pays 90 split three ways: Bob and Carol each owe her 30."""
        await _equal_expense(session, trip, people.alice, 90)

        assert await read_ledger(trip.id) == {
            people.alice: {people.bob: Decimal("-30"), people.carol: Decimal("-30")},
            people.bob: {people.alice: Decimal("30")},
            people.carol: {people.alice: Decimal("30")},
        }

    async def test_percentage_scenario(self, session, people, trip, read_ledger):
        await expenses.create_expense(
            session,
            group_id=trip.id,
            description="Hotel",
            amount=100,
            paid_by=people.alice,
            split_type="percentage",
            splits=[(people.bob, 60), (people.carol, 40)],
            acting_user_id=people.alice,
        )
        state = await read_ledger(trip.id)
        assert state[people.bob] == {people.alice: Decimal("60")}
        assert state[people.carol] == {people.alice: Decimal("40")}

    async def test_conservation_across_many_expenses(self, session, people, trip, read_ledger):
        await _equal_expense(session, trip, people.alice, "100")
        await _equal_expense(session, trip, people.bob, "45.55")
        await _equal_expense(session, trip, people.carol, "12.01")
        await settlements.settle(
            session, trip.id, people.carol, people.alice, "5.25", people.carol
        )

        state = await read_ledger(trip.id)
        assert sum(a for entries in state.values() for a in entries.values()) == 0
        for owner, entries in state.items():
            for counterparty, amount in entries.items():
                assert state[counterparty][owner] == -amount

    async def test_idempotent(self, session, session_factory, people, trip):
        await _equal_expense(session, trip, people.alice, 90)
        await _equal_expense(session, trip, people.bob, 30)

        async def snapshot():
            async with session_factory() as fresh:
                records = (
                    await fresh.execute(
                        select(Balance.id, Balance.user_id, Balance.updated_at).order_by(Balance.id)
                    )
                ).all()
                entries = (
                    await fresh.execute(
                        select(
                            BalanceEntry.id,
                            BalanceEntry.balance_id,
                            BalanceEntry.counterparty_id,
                            BalanceEntry.amount,
                        ).order_by(BalanceEntry.id)
                    )
                ).all()
                return records, entries

        before = await snapshot()
        async with session_factory() as other:
            await recompute_group_balances(other, trip.id)
            await recompute_group_balances(other, trip.id)
            await other.commit()
        assert await snapshot() == before

    async def test_settled_pairs_are_pruned(self, session, people, trip, read_ledger):
        await _equal_expense(session, trip, people.alice, 90)
        await settlements.settle(session, trip.id, people.bob, people.alice, 30, people.bob)

        state = await read_ledger(trip.id)
        assert people.bob not in state
        assert state[people.alice] == {people.carol: Decimal("-30")}
        assert state[people.carol] == {people.alice: Decimal("30")}

    async def test_deleted_expense_is_removed_from_balances(
        self, session, people, trip, read_ledger
    ):
        await _equal_expense(session, trip, people.alice, 90)
        second = await _equal_expense(session, trip, people.bob, 60)

        await expenses.delete_expense(session, second.id, people.alice)

        state = await read_ledger(trip.id)
        assert state[people.bob] == {people.alice: Decimal("30")}
        assert state[people.alice] == {people.bob: Decimal("-30"), people.carol: Decimal("-30")}

    async def test_storage_failure_keeps_previous_ledger(
        self, session, session_factory, people, trip, read_ledger, monkeypatch
    ):
        await _equal_expense(session, trip, people.alice, 90)
        group_id = trip.id
        before = await read_ledger(group_id)

        async def broken_replace(*args, **kwargs):
            raise OperationalError("UPDATE balances", {}, Exception("disk I/O error"))

        monkeypatch.setattr(ledger, "replace_group_balances", broken_replace)

        with pytest.raises(IntegrityFailure, match="could not be recomputed"):
            await settlements.settle(session, group_id, people.bob, people.alice, 30, people.bob)

        # the rollback expired trip, so only the saved id is used from here on
        assert await read_ledger(group_id) == before
        async with session_factory() as fresh:
            assert (await fresh.execute(select(Settlement))).first() is None
