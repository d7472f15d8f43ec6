import pytest

from database import MemoryStorage, SQLiteStorage, StorageError
from library import Library


class FlakyStorage(MemoryStorage):
    """MemoryStorage that refuses to save the datasets named in ``fail_on``."""

    def __init__(self):
        super().__init__()
        self.fail_on = set()
        self.fail_loads = False

    def save(self, name, data):
        if name in self.fail_on:
            raise StorageError(f"disk full while writing {name}")
        super().save(name, data)

    def load(self, name):
        if self.fail_loads:
            raise StorageError(f"cannot read {name}")
        return super().load(name)


@pytest.fixture
def db_file(tmp_path, request):
    # Unique database file per test
    return str(tmp_path / f"test_{request.node.name}.db")

@pytest.fixture
def storage():
    return MemoryStorage()

@pytest.fixture
def flaky_storage():
    return FlakyStorage()

@pytest.fixture
def lib(storage):
    return Library(storage)

@pytest.fixture
def sqlite_lib(db_file):
    return Library(SQLiteStorage(db_file))
