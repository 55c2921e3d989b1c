"""
Сервис работы с таблицей-реестром чата.
Цикл каждой операции: загрузить xlsx из хранилища → изменить строки → пересчитать баланс → записать обратно.
Методы синхронные; из бота вызываются через asyncio.to_thread.
"""

import re
import threading
import weakref
from datetime import date
from typing import Callable, Optional, Union

from ledger_codec import Ledger, LedgerRow, decode, encode, format_date
from ledger_errors import EmptyLedgerError, NotFoundError, ValidationError
from ledger_store import LedgerStore

Number = Union[int, float]

LEDGER_EXT = ".xlsx"

_KEY_STRIP_RE = re.compile(r"[^a-zA-Z0-9_-]")
_INT_RE = re.compile(r"^[+-]?\d+$")


def ledger_key(title: Optional[str], chat_id: int) -> str:
    """Имя файла таблицы для чата: название без лишних символов в нижнем регистре, иначе user_<id>."""
    name = _KEY_STRIP_RE.sub("", title or "").lower()
    if not name:
        name = f"user_{chat_id}"
    return name + LEDGER_EXT


def ledger_title(key: str) -> str:
    """Название таблицы для сообщений (ключ без .xlsx)."""
    return key[: -len(LEDGER_EXT)] if key.endswith(LEDGER_EXT) else key


def parse_int(value, field_name: str) -> int:
    """Строгий разбор целого (десятичное, необязательный знак). «10abc» и «1.5» — ошибка."""
    if isinstance(value, bool):
        raise ValidationError(f"Поле «{field_name}» должно быть целым числом")
    if isinstance(value, int):
        return value
    s = str(value or "").strip()
    if not _INT_RE.match(s):
        raise ValidationError(f"Поле «{field_name}» должно быть целым числом, получено: {s or '—'}")
    return int(s)


def _normalize(value: Number) -> Number:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def amount_with_percent(amount: int, percent: int) -> Number:
    """Сумма с учётом процента. Ветки для положительного и неположительного процента не объединять."""
    if percent > 0:
        result = amount + (amount * percent / 100)
    else:
        result = amount - (amount * abs(percent) / 100)
    return _normalize(result)


def _validate_description(description) -> str:
    text = (description or "").strip()
    if not text:
        raise ValidationError("Описание не может быть пустым")
    return text


class LedgerService:
    def __init__(self, store: LedgerStore, today: Callable[[], date] = date.today):
        self._store = store
        self._today = today
        # Один писатель на ключ внутри процесса: чтение-изменение-запись одной таблицы не пересекаются
        # Замок живёт, пока им пользуется хотя бы одна операция
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _load(self, key: str) -> Ledger:
        """Текущая таблица; если файла нет — новая пустая. Повреждённый файл — DecodeError, без подмены."""
        try:
            data = self._store.fetch(key)
        except NotFoundError:
            return Ledger()
        return decode(data)

    def _save(self, key: str, ledger: Ledger) -> None:
        self._store.put(key, encode(ledger))

    def _append(self, key: str, row: LedgerRow) -> LedgerRow:
        with self._lock_for(key):
            ledger = self._load(key)
            if row.is_in:
                row.balance = _normalize(ledger.last_balance + row.amount_with_percent)
            else:
                row.balance = _normalize(ledger.last_balance - row.amount_out)
            ledger.rows.append(row)
            self._save(key, ledger)
        return row

    def append_in(self, key: str, description, amount, percent) -> LedgerRow:
        """Поступление: сумма, процент и сумма с процентом; баланс растёт на сумму с процентом."""
        name = _validate_description(description)
        amount = parse_int(amount, "сумма")
        percent = parse_int(percent, "процент")
        row = LedgerRow(
            date=format_date(self._today()),
            name=name,
            amount_in=amount,
            percent=percent,
            amount_with_percent=amount_with_percent(amount, percent),
        )
        return self._append(key, row)

    def append_out(self, key: str, description, amount) -> LedgerRow:
        """Выбытие: баланс уменьшается на сумму."""
        name = _validate_description(description)
        amount = parse_int(amount, "сумма")
        row = LedgerRow(
            date=format_date(self._today()),
            name=name,
            amount_out=amount,
        )
        return self._append(key, row)

    def undo(self, key: str) -> LedgerRow:
        """Удаляет последнюю строку и возвращает её. Балансы остальных строк не трогаем."""
        with self._lock_for(key):
            ledger = decode(self._store.fetch(key))
            if not ledger.rows:
                raise EmptyLedgerError(ledger_title(key))
            removed = ledger.rows.pop()
            self._save(key, ledger)
        return removed

    def list_latest(self, key: str) -> bytes:
        """Текущий файл таблицы как есть (для отправки документом)."""
        data = self._store.fetch(key)
        if not data:
            raise NotFoundError(key)
        return data

