#!/usr/bin/env python3
"""
Скрипт запуска бота на Render.com.
Проверяет переменные окружения (токен, доступ к S3, WEBHOOK_BASE_URL) и запускает bot.py.
"""
import asyncio
import os
import sys
import traceback

# Python 3.10+: в MainThread должен быть event loop до любого кода PTB
try:
    asyncio.get_event_loop()
except RuntimeError:
    asyncio.set_event_loop(asyncio.new_event_loop())

REQUIRED_ENV = (
    "TELEGRAM_BOT_TOKEN",
    "S3_ENDPOINT",
    "S3_ACCESS_KEY_ID",
    "S3_SECRET_ACCESS_KEY",
)


def missing_env(environ=os.environ) -> list[str]:
    """Имена обязательных переменных, которые не заданы или пустые."""
    return [name for name in REQUIRED_ENV if not (environ.get(name) or "").strip()]


def access_warning(environ=os.environ):
    """Предупреждение, если TELEGRAM_ALLOWED_IDS не задан: бот на сервере будет открыт для всех."""
    if (environ.get("TELEGRAM_ALLOWED_IDS") or "").strip():
        return None
    return "ВНИМАНИЕ: TELEGRAM_ALLOWED_IDS не задан — таблицы может менять любой пользователь Telegram."


def main():
    missing = missing_env()
    if missing:
        print(f"Не заданы переменные окружения: {', '.join(missing)}", file=sys.stderr)
        sys.exit(1)

    warning = access_warning()
    if warning:
        print(warning, file=sys.stderr)

    webhook_base = os.environ.get("WEBHOOK_BASE_URL", "").strip()
    if not webhook_base:
        print("WEBHOOK_BASE_URL не задан. Задайте в Environment URL сервиса, например https://ledger-bot.onrender.com", file=sys.stderr)
        sys.exit(1)

    try:
        import bot
        bot.main()
    except Exception as e:
        print(f"Ошибка запуска бота: {e}", file=sys.stderr)
        traceback.print_exc(file=sys.stderr)
        sys.exit(1)

if __name__ == "__main__":
    main()
