"""
Tests for storage backends and transaction support
"""

import pytest

from core_vault.storage import InMemoryStorage, SQLiteStorage, create_storage


test_data = {
    "account": "alice",
    "asset": "native",
    "balance": "100500000"
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "vault.db")
    yield backend
    backend.close()


class TestStorageInterface:
    """Test basic storage operations on every backend"""

    def test_basic_operations(self, storage):
        storage.save("balances", "alice:native", test_data)
        assert storage.load("balances", "alice:native") == test_data

        assert storage.exists("balances", "alice:native")
        assert not storage.exists("balances", "bob:native")

        storage.save("balances", "bob:token", {"account": "bob", "asset": "token", "balance": "1"})
        assert len(storage.load_all("balances")) == 2
        assert storage.count("balances") == 2

        results = storage.find("balances", {"account": "bob"})
        assert len(results) == 1
        assert results[0]["asset"] == "token"

        assert storage.delete("balances", "alice:native")
        assert not storage.delete("balances", "alice:native")
        assert storage.load("balances", "alice:native") is None

        storage.clear_table("balances")
        assert storage.count("balances") == 0

    def test_update_keeps_single_record(self, storage):
        storage.save("balances", "alice:native", test_data)
        storage.save("balances", "alice:native", {**test_data, "balance": "1"})
        assert storage.count("balances") == 1
        assert storage.load("balances", "alice:native")["balance"] == "1"

    def test_load_all_preserves_insertion_order(self, storage):
        for i in range(5):
            storage.save("t", f"r{i}", {"i": i})
        storage.save("t", "r0", {"i": 99})
        assert [r["i"] for r in storage.load_all("t")] == [99, 1, 2, 3, 4]

    def test_returned_records_are_copies(self, storage):
        storage.save("balances", "alice:native", test_data)
        loaded = storage.load("balances", "alice:native")
        loaded["balance"] = "0"
        assert storage.load("balances", "alice:native")["balance"] == "100500000"


class TestAtomic:
    """Test atomic blocks"""

    def test_commit(self, storage):
        with storage.atomic():
            storage.save("balances", "alice:native", test_data)
        assert storage.load("balances", "alice:native") == test_data

    def test_rollback_on_error(self, storage):
        storage.save("balances", "alice:native", test_data)

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("balances", "alice:native", {**test_data, "balance": "0"})
                storage.save("balances", "bob:native", test_data)
                storage.delete("balances", "alice:native")
                raise RuntimeError("abort")

        assert storage.load("balances", "alice:native") == test_data
        assert not storage.exists("balances", "bob:native")

    def test_nested_inner_rollback_keeps_outer(self, storage):
        with storage.atomic():
            storage.save("t", "outer", {"v": 1})
            with pytest.raises(ValueError):
                with storage.atomic():
                    storage.save("t", "inner", {"v": 2})
                    raise ValueError("inner")
            assert storage.exists("t", "outer")
            assert not storage.exists("t", "inner")

        assert storage.exists("t", "outer")
        assert not storage.exists("t", "inner")

    def test_outer_rollback_discards_committed_inner(self, storage):
        with pytest.raises(ValueError):
            with storage.atomic():
                with storage.atomic():
                    storage.save("t", "inner", {"v": 2})
                raise ValueError("outer")

        assert not storage.exists("t", "inner")

    def test_table_created_inside_rolled_back_block(self, storage):
        with pytest.raises(ValueError):
            with storage.atomic():
                storage.save("fresh", "a", {"v": 1})
                raise ValueError("abort")

        assert storage.count("fresh") == 0
        storage.save("fresh", "a", {"v": 1})
        assert storage.count("fresh") == 1


class TestSQLitePersistence:
    """Test data survives reopening the database"""

    def test_reopen(self, tmp_path):
        path = tmp_path / "vault.db"
        first = SQLiteStorage(path)
        first.save("balances", "alice:native", test_data)
        first.close()

        second = SQLiteStorage(path)
        assert second.load("balances", "alice:native") == test_data
        second.close()


class TestCreateStorage:
    """Test URL based backend selection"""

    def test_memory(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_in_memory(self):
        storage = create_storage("sqlite://")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == ":memory:"

    def test_sqlite_file(self, tmp_path):
        path = tmp_path / "v.db"
        storage = create_storage(f"sqlite:///{path}")
        assert storage.db_path == str(path)
        storage.close()

    def test_unsupported(self):
        with pytest.raises(ValueError, match="Unsupported"):
            create_storage("postgresql://localhost/vault")
