"""
Test suite for the vault ledger

CRITICAL: total_deposited must always equal the sum of all balances.
"""

import pytest

from core_vault.ledger import AssetKind, Ledger, LedgerAggregates
from core_vault.storage import InMemoryStorage, SQLiteStorage


def assert_conserved(ledger: Ledger):
    total = sum(balance for _, _, balance in ledger.iter_balances())
    assert ledger.total_deposited() == total


@pytest.fixture(params=["memory", "sqlite"])
def ledger(request):
    storage = InMemoryStorage() if request.param == "memory" else SQLiteStorage(":memory:")
    yield Ledger(storage)
    storage.close()


class TestLedgerAggregates:
    """Test aggregate record serialization"""

    def test_round_trip_dict(self):
        aggregates = LedgerAggregates(total_deposited=10 ** 30, deposit_count=3, withdrawal_count=1)
        assert LedgerAggregates.from_dict(aggregates.to_dict()) == aggregates

    def test_amounts_stored_as_strings(self):
        data = LedgerAggregates(total_deposited=5).to_dict()
        assert data['total_deposited'] == "5"


class TestLedger:
    """Test balance mutations"""

    def test_fresh_ledger(self, ledger):
        assert ledger.get_aggregates() == LedgerAggregates()
        assert ledger.get_balance("alice", AssetKind.NATIVE) == 0
        assert list(ledger.iter_balances()) == []

    def test_credit(self, ledger):
        assert ledger.credit("alice", AssetKind.NATIVE, 39_561_400) == 39_561_400
        assert ledger.credit("alice", AssetKind.NATIVE, 100) == 39_561_500

        assert ledger.get_balance("alice", AssetKind.NATIVE) == 39_561_500
        assert ledger.get_balance("alice", AssetKind.TOKEN) == 0
        assert ledger.total_deposited() == 39_561_500
        assert_conserved(ledger)

    def test_assets_are_separate(self, ledger):
        ledger.credit("alice", AssetKind.NATIVE, 10)
        ledger.credit("alice", AssetKind.TOKEN, 20)
        ledger.credit("bob", AssetKind.TOKEN, 30)

        assert ledger.get_balance("alice", AssetKind.NATIVE) == 10
        assert ledger.get_balance("alice", AssetKind.TOKEN) == 20
        assert ledger.get_total_balance("alice") == 30
        assert ledger.get_total_balance("bob") == 30
        assert ledger.total_deposited() == 60
        assert_conserved(ledger)

    def test_debit(self, ledger):
        ledger.credit("alice", AssetKind.TOKEN, 1_000)
        assert ledger.debit("alice", AssetKind.TOKEN, 400) == 600
        assert ledger.total_deposited() == 600
        assert_conserved(ledger)

    def test_debit_to_zero_drops_row(self, ledger):
        ledger.credit("alice", AssetKind.TOKEN, 1_000)
        ledger.debit("alice", AssetKind.TOKEN, 1_000)

        assert ledger.get_balance("alice", AssetKind.TOKEN) == 0
        assert list(ledger.iter_balances()) == []
        assert ledger.total_deposited() == 0

    def test_counters(self, ledger):
        ledger.record_deposit()
        ledger.record_deposit()
        ledger.record_withdrawal()
        ledger.record_deposit(-1)

        aggregates = ledger.get_aggregates()
        assert aggregates.deposit_count == 1
        assert aggregates.withdrawal_count == 1

    def test_counters_do_not_touch_total(self, ledger):
        ledger.credit("alice", AssetKind.NATIVE, 7)
        ledger.record_deposit()
        assert ledger.total_deposited() == 7

    def test_transaction_rolls_back_group(self, ledger):
        ledger.credit("alice", AssetKind.NATIVE, 50)

        with pytest.raises(RuntimeError):
            with ledger.transaction():
                ledger.credit("alice", AssetKind.NATIVE, 25)
                ledger.record_deposit()
                raise RuntimeError("abort")

        assert ledger.get_balance("alice", AssetKind.NATIVE) == 50
        assert ledger.get_aggregates().deposit_count == 0
        assert_conserved(ledger)

    def test_large_values(self, ledger):
        huge = 2 ** 300
        ledger.credit("whale", AssetKind.TOKEN, huge)
        assert ledger.get_balance("whale", AssetKind.TOKEN) == huge
        assert ledger.total_deposited() == huge

    def test_aggregates_survive_new_ledger_instance(self):
        storage = InMemoryStorage()
        first = Ledger(storage)
        first.credit("alice", AssetKind.TOKEN, 5)
        first.record_deposit()

        second = Ledger(storage)
        assert second.get_aggregates() == LedgerAggregates(total_deposited=5, deposit_count=1)
