"""S3-хранилище таблиц (ответы S3 подменяются botocore Stubber)."""

from io import BytesIO

import boto3
import pytest
from botocore.exceptions import EndpointConnectionError
from botocore.response import StreamingBody
from botocore.stub import Stubber

from ledger_errors import NotFoundError, StorageError
from ledger_store import XLSX_CONTENT_TYPE, LedgerStore

BUCKET = "tables"
KEY = "mygroup.xlsx"


@pytest.fixture
def client():
    return boto3.client(
        "s3",
        endpoint_url="https://gateway.example.com",
        region_name="us-east-1",
        aws_access_key_id="test",
        aws_secret_access_key="test",
    )


def test_fetch_returns_body(client) -> None:
    data = b"PK\x03\x04 xlsx bytes"
    with Stubber(client) as stub:
        stub.add_response(
            "get_object",
            {"Body": StreamingBody(BytesIO(data), len(data))},
            {"Bucket": BUCKET, "Key": KEY},
        )
        assert LedgerStore(client).fetch(KEY) == data


@pytest.mark.parametrize(("code", "status"), [("NoSuchKey", 404), ("404", 404)])
def test_fetch_missing_key(client, code, status) -> None:
    with Stubber(client) as stub:
        stub.add_client_error("get_object", service_error_code=code, http_status_code=status)
        with pytest.raises(NotFoundError):
            LedgerStore(client).fetch(KEY)


def test_fetch_other_errors_are_storage_errors(client) -> None:
    with Stubber(client) as stub:
        stub.add_client_error("get_object", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(StorageError):
            LedgerStore(client).fetch(KEY)


def test_put_sends_xlsx(client) -> None:
    data = b"xlsx"
    with Stubber(client) as stub:
        stub.add_response(
            "put_object",
            {},
            {
                "Bucket": "custom",
                "Key": KEY,
                "Body": data,
                "ContentLength": len(data),
                "ContentType": XLSX_CONTENT_TYPE,
            },
        )
        LedgerStore(client, bucket="custom").put(KEY, data)
        stub.assert_no_pending_responses()


def test_put_failure(client) -> None:
    with Stubber(client) as stub:
        stub.add_client_error("put_object", service_error_code="InternalError", http_status_code=500)
        with pytest.raises(StorageError):
            LedgerStore(client).put(KEY, b"xlsx")


class _OfflineClient:
    def get_object(self, **kwargs):
        raise EndpointConnectionError(endpoint_url="https://gateway.example.com")

    def put_object(self, **kwargs):
        raise EndpointConnectionError(endpoint_url="https://gateway.example.com")


def test_connection_errors_are_storage_errors() -> None:
    store = LedgerStore(_OfflineClient())
    with pytest.raises(StorageError):
        store.fetch(KEY)
    with pytest.raises(StorageError):
        store.put(KEY, b"xlsx")


def test_from_env_requires_credentials(monkeypatch) -> None:
    monkeypatch.delenv("S3_ACCESS_KEY_ID", raising=False)
    monkeypatch.delenv("S3_SECRET_ACCESS_KEY", raising=False)
    with pytest.raises(RuntimeError):
        LedgerStore.from_env()


def test_from_env_uses_bucket(monkeypatch) -> None:
    monkeypatch.setenv("S3_ENDPOINT", "https://gateway.example.com")
    monkeypatch.setenv("S3_ACCESS_KEY_ID", "key")
    monkeypatch.setenv("S3_SECRET_ACCESS_KEY", "secret")
    monkeypatch.setenv("S3_BUCKET", "ledgers")

    store = LedgerStore.from_env()

    assert store.bucket == "ledgers"
