"""
Ошибки работы с таблицей-реестром.
Каждая ошибка несёт текст, который можно показать пользователю в чате.
"""


class LedgerError(Exception):
    """Базовая ошибка реестра."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(LedgerError):
    """Неверный ввод пользователя: описание, сумма, процент, число параметров."""


class NotFoundError(LedgerError):
    """В хранилище нет файла по ключу (ожидаемая ситуация, не повреждение)."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Таблица {key} не найдена")


class DecodeError(LedgerError):
    """Файл есть, но это не читаемая xlsx-таблица."""


class EmptyLedgerError(LedgerError):
    """Отмена записи в пустой таблице."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Таблица {key} пуста")


class StorageError(LedgerError):
    """Сбой чтения или записи в хранилище (сеть, права, 5xx)."""
