"""
Разбор входящих сообщений: команды /start, /in, /out, /undo, /list и ввод параметров после /in и /out.
Не зависит от Telegram — на вход IncomingMessage, на выход список Reply; бот только доставляет ответы.
"""

import asyncio
import re
import sys
import traceback
from dataclasses import dataclass
from typing import Iterable, Optional

from ledger_codec import LedgerRow
from ledger_errors import (
    DecodeError,
    EmptyLedgerError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from ledger_service import LedgerService, ledger_key, ledger_title

CMD_START = "start"
CMD_IN = "in"
CMD_OUT = "out"
CMD_UNDO = "undo"
CMD_LIST = "list"

# Команды для меню бота (set_my_commands): имя → описание
BOT_COMMANDS = [
    (CMD_START, "Справка по командам"),
    (CMD_IN, "Добавить поступление в таблицу"),
    (CMD_OUT, "Добавить выбытие в таблицу"),
    (CMD_UNDO, "Удалить последнюю запись"),
    (CMD_LIST, "Получить актуальную таблицу"),
]

# Ожидаемое число слов в параметрах: описание сумма [процент]
PENDING_IN = CMD_IN
PENDING_OUT = CMD_OUT
_PARAM_COUNT = {PENDING_IN: 3, PENDING_OUT: 2}

_COMMAND_RE = re.compile(r"^/(\w+)(@[\w_]+)?$")

MSG_ACCESS_DENIED = "🚫 Доступ запрещён. Вы не можете пользоваться этим ботом."
MSG_FORMAT_IN = "Неверный формат. Ожидается: {описание} {сумма} {процент}"
MSG_FORMAT_OUT = "Неверный формат. Ожидается: {описание} {сумма}"
MSG_PROMPT_IN = "Введите поступление: {описание} {сумма} {процент}\nНапример: аренда 1000 10"
MSG_PROMPT_OUT = "Введите выбытие: {описание} {сумма}\nНапример: продукты 200"
MSG_FAILED = "❌ Не удалось обновить таблицу. Попробуйте ещё раз."


def _help_text(first_name: str) -> str:
    greeting = f"Привет, {first_name}! 😊" if first_name else "Привет! 😊"
    return (
        f"{greeting}\n"
        "Бот ведёт таблицу операций этого чата в облачном хранилище.\n\n"
        "📌 Команды:\n"
        "• /start — справка.\n"
        "• /in — добавить поступление.\n"
        "• /out — добавить выбытие.\n"
        "• /undo — удалить последнюю запись.\n"
        "• /list — получить актуальную таблицу.\n\n"
        "После /in или /out отправьте параметры одним сообщением:\n"
        "• для /in: {описание} {сумма} {процент}\n"
        "• для /out: {описание} {сумма}"
    )


def _format_amount(value) -> str:
    """Сумма для сообщения: целые без дробной части, разделитель тысяч — пробел."""
    if value is None:
        return "—"
    if isinstance(value, float) and not value.is_integer():
        return f"{value:,.2f}".replace(",", " ")
    return f"{int(value):,}".replace(",", " ")


def _format_row(row: LedgerRow) -> str:
    if row.is_in:
        return (
            f"📅 {row.date} · {row.name}\n"
            f"➕ {_format_amount(row.amount_in)} ({_format_amount(row.percent)}%) = {_format_amount(row.amount_with_percent)}\n"
            f"💰 Баланс: {_format_amount(row.balance)}"
        )
    return (
        f"📅 {row.date} · {row.name}\n"
        f"➖ {_format_amount(row.amount_out)}\n"
        f"💰 Баланс: {_format_amount(row.balance)}"
    )


@dataclass
class IncomingMessage:
    sender_id: int
    chat_id: int
    text: str
    chat_title: Optional[str] = None
    sender_name: str = ""


@dataclass
class Reply:
    """Ответ в чат: текст или документ (тогда text — подпись)."""

    text: str
    document: Optional[bytes] = None
    filename: Optional[str] = None


class SessionStore:
    """Какую команду ждёт чат: None, «in» или «out». Своё состояние у каждого чата, только в памяти."""

    def __init__(self):
        self._pending: dict[int, str] = {}

    def get(self, chat_id: int) -> Optional[str]:
        return self._pending.get(chat_id)

    def set(self, chat_id: int, command: str) -> None:
        self._pending[chat_id] = command

    def pop(self, chat_id: int) -> Optional[str]:
        return self._pending.pop(chat_id, None)


def parse_command(text: str) -> Optional[str]:
    """«/in» или «/in@MyBot» → «in». Команда — всё сообщение целиком; иначе None."""
    m = _COMMAND_RE.match((text or "").strip())
    if not m:
        return None
    return m.group(1).lower()


def parse_params(text: str, pending: str) -> list[str]:
    """Разбивает ввод по пробелам и проверяет число слов для команды."""
    parts = (text or "").split()
    if len(parts) != _PARAM_COUNT[pending]:
        raise ValidationError(MSG_FORMAT_IN if pending == PENDING_IN else MSG_FORMAT_OUT)
    return parts


class LedgerDispatcher:
    def __init__(self, service: LedgerService, allowed_ids: Iterable[int] = ()):
        self.service = service
        self.allowed_ids = set(allowed_ids)
        self.sessions = SessionStore()

    def is_allowed(self, user_id: int) -> bool:
        """Пустой список разрешённых = доступ у всех."""
        if not self.allowed_ids:
            return True
        return user_id in self.allowed_ids

    async def handle_message(self, msg: IncomingMessage) -> list[Reply]:
        text = (msg.text or "").strip()
        if text.startswith("/"):
            command = parse_command(text)
            handler = self._command_handlers().get(command)
            if handler is None:
                return []
            if not self.is_allowed(msg.sender_id):
                return [Reply(MSG_ACCESS_DENIED)]
            return await handler(msg)

        if self.sessions.get(msg.chat_id) is None:
            return []
        if not self.is_allowed(msg.sender_id):
            return [Reply(MSG_ACCESS_DENIED)]
        # Одна попытка на команду: состояние сбрасывается до разбора, при любом исходе
        pending = self.sessions.pop(msg.chat_id)
        return await self._handle_params(msg, pending, text)

    def _command_handlers(self):
        return {
            CMD_START: self._cmd_start,
            CMD_IN: self._cmd_in,
            CMD_OUT: self._cmd_out,
            CMD_UNDO: self._cmd_undo,
            CMD_LIST: self._cmd_list,
        }

    async def _cmd_start(self, msg: IncomingMessage) -> list[Reply]:
        return [Reply(_help_text(msg.sender_name))]

    async def _cmd_in(self, msg: IncomingMessage) -> list[Reply]:
        self.sessions.set(msg.chat_id, PENDING_IN)
        return [Reply(MSG_PROMPT_IN)]

    async def _cmd_out(self, msg: IncomingMessage) -> list[Reply]:
        self.sessions.set(msg.chat_id, PENDING_OUT)
        return [Reply(MSG_PROMPT_OUT)]

    async def _cmd_undo(self, msg: IncomingMessage) -> list[Reply]:
        key = ledger_key(msg.chat_title, msg.chat_id)
        title = ledger_title(key)
        try:
            removed = await asyncio.to_thread(self.service.undo, key)
        except NotFoundError:
            return [Reply(f"❌ Таблица {title} не найдена.")]
        except EmptyLedgerError:
            return [Reply(f"❌ Таблица {title} пуста.")]
        except Exception as e:
            return [self._error_reply("/undo", e)]
        return [Reply(f"✅ Последняя запись удалена из {title}:\n{_format_row(removed)}")]

    async def _cmd_list(self, msg: IncomingMessage) -> list[Reply]:
        key = ledger_key(msg.chat_title, msg.chat_id)
        title = ledger_title(key)
        try:
            data = await asyncio.to_thread(self.service.list_latest, key)
        except NotFoundError:
            return [Reply(f"❌ Таблица {title} не найдена.")]
        except Exception as e:
            return [self._error_reply("/list", e)]
        return [Reply(f"✅ Актуальная версия таблицы {title}", document=data, filename=key)]

    async def _handle_params(self, msg: IncomingMessage, pending: str, text: str) -> list[Reply]:
        key = ledger_key(msg.chat_title, msg.chat_id)
        try:
            parts = parse_params(text, pending)
            if pending == PENDING_IN:
                row = await asyncio.to_thread(self.service.append_in, key, parts[0], parts[1], parts[2])
            else:
                row = await asyncio.to_thread(self.service.append_out, key, parts[0], parts[1])
        except ValidationError as e:
            return [Reply(f"❌ {e.message}")]
        except Exception as e:
            return [self._error_reply(f"/{pending}", e)]
        return [Reply(f"✅ Запись добавлена в {ledger_title(key)}\n{_format_row(row)}")]

    def _error_reply(self, where: str, e: Exception) -> Reply:
        """Ошибка хранилища или файла — сообщение пользователю; неожиданная — traceback в консоль."""
        if isinstance(e, DecodeError):
            print(f"[Бот] {where}: повреждённая таблица: {e}", file=sys.stderr)
            return Reply(f"❌ Файл таблицы повреждён и не может быть прочитан. {e.message}")
        if isinstance(e, StorageError):
            print(f"[Бот] {where}: ошибка хранилища: {e}", file=sys.stderr)
            return Reply(f"❌ Хранилище недоступно. Попробуйте ещё раз.\n{e.message}")
        print(f"\n--- Ошибка в {where} ---", file=sys.stderr)
        traceback.print_exception(type(e), e, e.__traceback__, file=sys.stderr)
        print("---\n", file=sys.stderr)
        return Reply(MSG_FAILED)
