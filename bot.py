"""
Telegram-бот для ведения таблицы операций чата в S3-хранилище.
Сценарий: /in или /out → параметры одним сообщением → строка в xlsx; /undo — удалить последнюю; /list — прислать файл.
"""

import asyncio
import os
import sys
import traceback
from io import BytesIO
from typing import Optional

from dotenv import load_dotenv
from telegram import BotCommand, InputFile, Update
from telegram.error import NetworkError, TimedOut
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from dispatcher import BOT_COMMANDS, IncomingMessage, LedgerDispatcher, Reply
from ledger_service import LedgerService
from ledger_store import LedgerStore


def _parse_allowed_user_ids() -> set:
    """Список разрешённых Telegram user ID из TELEGRAM_ALLOWED_IDS (через запятую). Пусто = доступ у всех."""
    raw = os.getenv("TELEGRAM_ALLOWED_IDS", "").strip()
    if not raw:
        return set()
    return {int(x.strip()) for x in raw.split(",") if x.strip()}


# Повторы отправки при временных сетевых сбоях (NetworkError, TimedOut)
_SEND_RETRY_ATTEMPTS = 3
_SEND_RETRY_DELAY_SEC = 1.5


async def _retry_on_network(awaitable_factory):
    """Выполняет действие с повторами при NetworkError/TimedOut. awaitable_factory() каждый раз создаёт новый awaitable (напр. bot.send_message(...))."""
    last_exc = None
    for attempt in range(_SEND_RETRY_ATTEMPTS):
        try:
            return await awaitable_factory()
        except (NetworkError, TimedOut) as e:
            last_exc = e
            if attempt < _SEND_RETRY_ATTEMPTS - 1:
                await asyncio.sleep(_SEND_RETRY_DELAY_SEC * (attempt + 1))
            else:
                raise
    if last_exc is not None:
        raise last_exc


def _chat_id_from_update(update: object) -> Optional[int]:
    """Извлечь chat_id из update, иначе None."""
    if not isinstance(update, Update):
        return None
    if update.effective_chat:
        return update.effective_chat.id
    return None


async def _global_error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Обработка ошибок: сетевые сбои — короткий лог и уведомление пользователю, остальное — в консоль."""
    err = context.error
    if err is None:
        return
    if isinstance(err, (NetworkError, TimedOut)):
        print(f"[Бот] Сетевой сбой: {type(err).__name__}: {err}", file=sys.stderr)
        chat_id = _chat_id_from_update(update)
        if chat_id is not None:
            try:
                await _retry_on_network(
                    lambda: context.bot.send_message(
                        chat_id,
                        "⚠️ Сеть временно недоступна. Повторите запрос через несколько секунд.",
                    )
                )
            except (NetworkError, TimedOut):
                print("[Бот] Не удалось отправить уведомление о сбое сети", file=sys.stderr)
        return
    print("\n--- Ошибка в боте ---", file=sys.stderr)
    traceback.print_exception(type(err), err, err.__traceback__, file=sys.stderr)
    print("---\n", file=sys.stderr)


# Папка, где лежит bot.py — для пути к .env (не зависим от текущей директории запуска).
_bot_dir = os.path.dirname(os.path.abspath(__file__))

# .env ищем рядом с bot.py; если файла нет — пробуем текущую рабочую директорию.
# override=True — значения из .env перезаписывают уже установленные.
_load_env_path = os.path.join(_bot_dir, ".env")
if os.path.isfile(_load_env_path):
    load_dotenv(_load_env_path, override=True)
else:
    load_dotenv(override=True)


def _incoming_from_update(update: Update) -> Optional[IncomingMessage]:
    """Update → IncomingMessage; None, если это не текстовое сообщение пользователя."""
    message = update.effective_message
    user = update.effective_user
    chat = update.effective_chat
    if not message or not message.text or not user or not chat:
        return None
    return IncomingMessage(
        sender_id=user.id,
        chat_id=chat.id,
        text=message.text,
        chat_title=chat.title,
        sender_name=user.first_name or "",
    )


async def _send_reply(update: Update, context: ContextTypes.DEFAULT_TYPE, reply: Reply) -> None:
    chat_id = update.effective_chat.id
    if reply.document is not None:
        await _retry_on_network(
            lambda: context.bot.send_document(
                chat_id,
                InputFile(BytesIO(reply.document), filename=reply.filename),
                caption=reply.text,
            )
        )
        return
    await _retry_on_network(lambda: context.bot.send_message(chat_id, reply.text))


def _get_dispatcher(context: ContextTypes.DEFAULT_TYPE) -> LedgerDispatcher:
    return context.bot_data["dispatcher"]


async def handle_update(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Команды и обычный текст идут в один диспетчер; ответы отправляем по порядку."""
    msg = _incoming_from_update(update)
    if msg is None:
        return
    replies = await _get_dispatcher(context).handle_message(msg)
    for reply in replies:
        await _send_reply(update, context, reply)


async def _post_init(app: Application) -> None:
    """Меню команд в клиенте Telegram."""
    await app.bot.set_my_commands([BotCommand(name, description) for name, description in BOT_COMMANDS])


def _run_webhook_with_health(app: Application, port: int, webhook_url: str) -> None:
    """Запуск webhook с маршрутом GET / (200 OK) для cron-job.org и POST /webhook для Telegram."""
    from aiohttp import web

    async def health(_request: web.Request) -> web.Response:
        return web.Response(text="OK", status=200)

    async def webhook_handler(request: web.Request) -> web.Response:
        try:
            data = await request.json()
        except ValueError:
            return web.Response(status=400)
        update = Update.de_json(data, app.bot)
        await app.update_queue.put(update)
        return web.Response(status=200)

    async def run() -> None:
        await app.initialize()
        if app.post_init:
            await app.post_init(app)
        await app.bot.set_webhook(url=webhook_url, allowed_updates=Update.ALL_TYPES)
        await app.start()
        app_web = web.Application()
        app_web.router.add_get("/", health)
        app_web.router.add_get("/health", health)
        app_web.router.add_post("/webhook", webhook_handler)
        runner = web.AppRunner(app_web)
        await runner.setup()
        site = web.TCPSite(runner, "0.0.0.0", port)
        await site.start()
        try:
            while True:
                await asyncio.sleep(3600)
        except asyncio.CancelledError:
            pass
        finally:
            await runner.cleanup()
            await app.stop()
            await app.shutdown()

    asyncio.run(run())


def build_application(token: str, dispatcher: LedgerDispatcher, webhook: bool = False) -> Application:
    # Увеличенные таймауты: медленное хранилище не должно обрывать ответ бота (TimedOut)
    builder = (
        Application.builder()
        .token(token)
        .connect_timeout(30.0)
        .read_timeout(30.0)
        .write_timeout(30.0)
        .get_updates_connect_timeout(30.0)
        .get_updates_read_timeout(30.0)
        .get_updates_write_timeout(30.0)
        .post_init(_post_init)
    )
    if webhook:
        builder = builder.updater(None)  # свой сервер с GET / для cron и POST /webhook
    app = builder.build()
    app.bot_data["dispatcher"] = dispatcher
    for name, _ in BOT_COMMANDS:
        app.add_handler(CommandHandler(name, handle_update))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_update))
    app.add_error_handler(_global_error_handler)
    return app


def main() -> None:
    # На Python 3.10+ в MainThread может не быть event loop — PTB падает без этого
    try:
        asyncio.get_event_loop()
    except RuntimeError:
        asyncio.set_event_loop(asyncio.new_event_loop())

    token = (os.getenv("TELEGRAM_BOT_TOKEN") or "").strip()
    if not token:
        raise RuntimeError(
            f"TELEGRAM_BOT_TOKEN не задан. Проверьте файл .env в папке с bot.py.\n"
            f"Ожидаемый путь: {_load_env_path}\n"
            f"Текущая рабочая директория: {os.getcwd()}"
        )
    if "BOTFATHER" in token or "your_bot_token" in token:
        raise RuntimeError(
            f"В .env указан плейсхолдер вместо реального токена. Замените на токен из @BotFather.\n"
            f"Файл: {_load_env_path}"
        )

    allowed_ids = _parse_allowed_user_ids()
    if allowed_ids:
        print(f"[Бот] Ограничение доступа: включено, разрешённых ID: {len(allowed_ids)}", file=sys.stderr)
    else:
        print("[Бот] Ограничение доступа: выключено (TELEGRAM_ALLOWED_IDS не задан)", file=sys.stderr)

    service = LedgerService(LedgerStore.from_env())
    dispatcher = LedgerDispatcher(service, allowed_ids)

    webhook_base = os.getenv("WEBHOOK_BASE_URL", "").rstrip("/")
    app = build_application(token, dispatcher, webhook=bool(webhook_base))

    if webhook_base:
        port = int(os.environ.get("PORT", "8443"))
        webhook_url = f"{webhook_base}/webhook"
        print(f"[Бот] Режим webhook: {webhook_url}, порт {port}, GET / для cron", file=sys.stderr)
        _run_webhook_with_health(app, port, webhook_url)
    else:
        app.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
