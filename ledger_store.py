"""
Хранилище файлов таблиц в S3-совместимом бакете (Storj, MinIO, AWS).
Ключ — имя файла таблицы (например, «mygroup.xlsx»), значение — байты xlsx.
"""

import os
import sys

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ledger_errors import NotFoundError, StorageError

DEFAULT_BUCKET = "tables"
DEFAULT_REGION = "us-east-1"

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# Таймауты запросов к хранилищу (секунды). Повторов нет: ошибку видит пользователь и повторяет команду сам.
S3_CONNECT_TIMEOUT = 10
S3_READ_TIMEOUT = 30

_NOT_FOUND_CODES = ("NoSuchKey", "404", "NotFound")


def _s3_config() -> Config:
    return Config(
        connect_timeout=S3_CONNECT_TIMEOUT,
        read_timeout=S3_READ_TIMEOUT,
        retries={"total_max_attempts": 1},
    )


def _error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))


class LedgerStore:
    def __init__(self, client, bucket: str = DEFAULT_BUCKET):
        self._client = client
        self.bucket = bucket

    @classmethod
    def from_env(cls) -> "LedgerStore":
        """Клиент S3 из S3_ENDPOINT, S3_ACCESS_KEY_ID, S3_SECRET_ACCESS_KEY (и необязательных S3_REGION, S3_BUCKET)."""
        endpoint = (os.getenv("S3_ENDPOINT") or "").strip()
        access_key = (os.getenv("S3_ACCESS_KEY_ID") or "").strip()
        secret_key = (os.getenv("S3_SECRET_ACCESS_KEY") or "").strip()
        if not access_key or not secret_key:
            raise RuntimeError("S3_ACCESS_KEY_ID и S3_SECRET_ACCESS_KEY должны быть заданы в .env")
        bucket = (os.getenv("S3_BUCKET") or "").strip() or DEFAULT_BUCKET
        client = boto3.client(
            "s3",
            endpoint_url=endpoint or None,
            region_name=(os.getenv("S3_REGION") or "").strip() or DEFAULT_REGION,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=_s3_config(),
        )
        print(f"[ledger] Хранилище: {endpoint or 'AWS S3'}, бакет {bucket}", file=sys.stderr)
        return cls(client, bucket)

    def fetch(self, key: str) -> bytes:
        """Байты файла по ключу. NotFoundError — файла нет; StorageError — любой другой сбой."""
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise NotFoundError(key) from e
            raise StorageError(f"Ошибка чтения {key} из хранилища: {_error_code(e) or e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Нет связи с хранилищем: {e}") from e

    def put(self, key: str, data: bytes) -> None:
        """Перезаписывает (или создаёт) файл по ключу. Кто записал последним — тот и прав."""
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentLength=len(data),
                ContentType=XLSX_CONTENT_TYPE,
            )
        except ClientError as e:
            raise StorageError(f"Ошибка записи {key} в хранилище: {_error_code(e) or e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Нет связи с хранилищем: {e}") from e
