"""Проверка окружения перед запуском на Render."""

from run_on_render import access_warning, missing_env


def test_missing_env_lists_empty_values() -> None:
    environ = {
        "TELEGRAM_BOT_TOKEN": "123:abc",
        "S3_ENDPOINT": " ",
        "S3_ACCESS_KEY_ID": "key",
    }

    assert missing_env(environ) == ["S3_ENDPOINT", "S3_SECRET_ACCESS_KEY"]


def test_missing_env_complete() -> None:
    environ = {
        "TELEGRAM_BOT_TOKEN": "123:abc",
        "S3_ENDPOINT": "https://gateway.storjshare.io",
        "S3_ACCESS_KEY_ID": "key",
        "S3_SECRET_ACCESS_KEY": "secret",
    }

    assert missing_env(environ) == []


def test_access_warning_when_allow_list_missing() -> None:
    assert access_warning({}) is not None
    assert access_warning({"TELEGRAM_ALLOWED_IDS": "  "}) is not None
    assert access_warning({"TELEGRAM_ALLOWED_IDS": "7540947010"}) is None
