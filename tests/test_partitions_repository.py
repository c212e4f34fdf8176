from __future__ import annotations

import pytest

from conciliapp.repositories.partitions import InMemoryPartitionsRepository, PostgresPartitionsRepository


def test_inmemory_partitions_repository_append_update_delete():
    repo = InMemoryPartitionsRepository({})
    created = repo.ensure(name="REG_2025_mar", header=["a", "b"])
    assert created["created"] is True
    again = repo.ensure(name="REG_2025_mar", header=["x"])
    assert again == {"name": "REG_2025_mar", "header": ["a", "b"], "created": False}

    assert repo.append(name="REG_2025_mar", row=["1", None]) == 0
    assert repo.append(name="REG_2025_mar", row=["2", "y"]) == 1
    assert repo.read_column(name="REG_2025_mar", column_index=1) == ["", "y"]

    touched = repo.update_cells(name="REG_2025_mar", updates=[(0, {1: "z", 3: "w"}), (9, {0: "nope"})])
    assert touched == [0]
    assert repo.read_row(name="REG_2025_mar", position=0) == ["1", "z", "", "w"]

    removed = repo.delete_row(name="REG_2025_mar", position=0)
    assert removed == ["1", "z", "", "w"]
    assert repo.read_rows(name="REG_2025_mar") == [["2", "y"]]
    assert repo.delete_row(name="REG_2025_mar", position=5) is None


def test_inmemory_partitions_repository_append_requires_partition():
    repo = InMemoryPartitionsRepository({})
    with pytest.raises(KeyError):
        repo.append(name="REG_2025_mar", row=["x"])


def test_postgres_partitions_repository_rejects_invalid_table_name():
    class DummyRunner:
        def run_in_tx(self, *, fn):
            return fn(None)

    with pytest.raises(ValueError, match="invalid SQL identifier"):
        PostgresPartitionsRepository(tx_runner=DummyRunner(), rows_table="rows;drop table x")


def _fake_runner(statements: list, results: list):
    class FakeCursor:
        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def execute(self, query: str, params=None):
            statements.append((" ".join(query.split()), params))
            self._result = results.pop(0) if results else None

        def fetchone(self):
            return self._result

        def fetchall(self):
            return self._result or []

    class FakeConn:
        def cursor(self):
            return FakeCursor()

    class FakeRunner:
        def run_in_tx(self, *, fn):
            return fn(FakeConn())

    return FakeRunner()


def test_postgres_partitions_repository_ensure_returns_stored_header():
    statements: list = []
    results: list = [None, (["Timestamp", "Vendedor"],)]
    repo = PostgresPartitionsRepository(tx_runner=_fake_runner(statements, results))
    info = repo.ensure(name="REG_2025_mar", header=["Timestamp", "Vendedor", "Codigo Vendedor"])
    assert info == {"name": "REG_2025_mar", "header": ["Timestamp", "Vendedor"], "created": False}
    assert statements[0][0].startswith("INSERT INTO record_partitions")
    assert "ON CONFLICT(name) DO NOTHING" in statements[0][0]


def test_postgres_partitions_repository_append_locks_partition_and_takes_next_position():
    statements: list = []
    results: list = [("REG_2025_mar",), (3,), None]
    repo = PostgresPartitionsRepository(tx_runner=_fake_runner(statements, results))
    position = repo.append(name="REG_2025_mar", row=["a", None])
    assert position == 3
    assert "FOR UPDATE" in statements[0][0]
    assert statements[2][0].startswith("INSERT INTO partition_rows")
    assert statements[2][1] == ("REG_2025_mar", 3, '["a", ""]')


def test_postgres_partitions_repository_delete_shifts_following_rows():
    statements: list = []
    results: list = [(["a", "b"],), None]
    repo = PostgresPartitionsRepository(tx_runner=_fake_runner(statements, results))
    removed = repo.delete_row(name="REG_2025_mar", position=1)
    assert removed == ["a", "b"]
    assert statements[0][0].startswith("DELETE FROM partition_rows")
    assert "SET position = position - 1" in statements[1][0]
    assert statements[1][1] == ("REG_2025_mar", 1)


def test_postgres_partitions_repository_update_cells_rewrites_row():
    statements: list = []
    results: list = [(["a", "b"],), None, None]
    repo = PostgresPartitionsRepository(tx_runner=_fake_runner(statements, results))
    touched = repo.update_cells(name="REG_2025_mar", updates=[(0, {1: "z", 2: "w"}), (7, {0: "x"})])
    assert touched == [0]
    assert statements[1][0].startswith("UPDATE partition_rows")
    assert statements[1][1] == ('["a", "z", "w"]', "REG_2025_mar", 0)
