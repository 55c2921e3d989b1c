"""Общие фикстуры: хранилище в памяти вместо S3 и сервис с фиксированной датой."""

from datetime import date

import pytest

from dispatcher import LedgerDispatcher
from ledger_errors import NotFoundError, StorageError
from ledger_service import LedgerService

TODAY = date(2026, 10, 19)
ALLOWED_USER = 7540947010
STRANGER = 1000


class MemoryStore:
    """Хранилище-заглушка: словарь ключ → байты, счётчики вызовов, сбой записи по флагу."""

    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.fetch_calls: list[str] = []
        self.put_calls: list[str] = []
        self.fail_put = False

    def fetch(self, key: str) -> bytes:
        self.fetch_calls.append(key)
        if key not in self.blobs:
            raise NotFoundError(key)
        return self.blobs[key]

    def put(self, key: str, data: bytes) -> None:
        self.put_calls.append(key)
        if self.fail_put:
            raise StorageError(f"Ошибка записи {key} в хранилище: 503")
        self.blobs[key] = data


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def service(store: MemoryStore) -> LedgerService:
    return LedgerService(store, today=lambda: TODAY)


@pytest.fixture
def dispatcher(service: LedgerService) -> LedgerDispatcher:
    return LedgerDispatcher(service, allowed_ids={ALLOWED_USER})
