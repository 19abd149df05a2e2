import time
from io import BytesIO
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from app.core.errors import StorageError
from app.services.storage import R2StorageGateway


def _client_error(code: str, operation: str = "GetObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.mark.asyncio
async def test_local_store_fetch_and_exists(storage):
    stored = await storage.store(b"pixels", "owner/a.jpg", "photos")

    assert stored.path == "photos/owner/a.jpg"
    assert stored.size == 6
    assert stored.url == "http://testserver/files/photos/owner/a.jpg"
    assert await storage.fetch(stored.path, "photos") == b"pixels"
    assert await storage.exists(stored.path, "photos") is True


@pytest.mark.asyncio
async def test_local_fetch_missing_returns_none(storage):
    assert await storage.fetch("photos/nope.jpg", "photos") is None
    assert await storage.exists("photos/nope.jpg", "photos") is False


@pytest.mark.asyncio
async def test_local_delete_is_idempotent(storage):
    stored = await storage.store(b"pixels", "a.jpg", "photos")

    assert await storage.delete(stored.path, "photos") is True
    assert await storage.delete(stored.path, "photos") is True
    assert await storage.exists(stored.path, "photos") is False


@pytest.mark.asyncio
async def test_paths_outside_container_are_rejected(storage):
    with pytest.raises(StorageError):
        await storage.fetch("other/a.jpg", "photos")
    with pytest.raises(StorageError):
        await storage.store(b"x", "../escape.jpg", "photos")


@pytest.mark.asyncio
async def test_local_temporary_url_is_signed_and_expires(storage):
    stored = await storage.store(b"pixels", "a.jpg", "photos")

    url = await storage.temporary_url(stored.path, "photos", ttl_minutes=60)

    query = parse_qs(urlparse(url).query)
    expires = int(query["expires"][0])
    signature = query["signature"][0]
    assert abs(expires - (time.time() + 3600)) < 5
    assert storage.verify(stored.path, expires, signature)
    assert not storage.verify("photos/other.jpg", expires, signature)
    assert not storage.verify(stored.path, expires, signature, now=expires + 1)


@pytest.mark.asyncio
async def test_local_temporary_url_for_missing_object_is_none(storage):
    assert await storage.temporary_url("photos/missing.jpg", "photos", ttl_minutes=60) is None


@pytest.mark.asyncio
async def test_r2_store_puts_object_under_container():
    client = MagicMock()
    gateway = R2StorageGateway(bucket_name="bucket", client=client, public_base_url="https://cdn.example.com/")

    stored = await gateway.store(b"data", "owner/a.jpg", "photos", content_type="image/jpeg")

    client.put_object.assert_called_once_with(
        Bucket="bucket", Key="photos/owner/a.jpg", Body=b"data", ContentType="image/jpeg"
    )
    assert stored.path == "photos/owner/a.jpg"
    assert stored.url == "https://cdn.example.com/photos/owner/a.jpg"


@pytest.mark.asyncio
async def test_r2_access_denied_is_not_retryable():
    client = MagicMock()
    client.put_object.side_effect = _client_error("AccessDenied", "PutObject")
    gateway = R2StorageGateway(bucket_name="bucket", client=client)

    with pytest.raises(StorageError) as excinfo:
        await gateway.store(b"data", "a.jpg", "photos")

    assert excinfo.value.retryable is False


@pytest.mark.asyncio
async def test_r2_connection_failure_is_retryable():
    client = MagicMock()
    client.put_object.side_effect = EndpointConnectionError(endpoint_url="https://r2.example.com")
    gateway = R2StorageGateway(bucket_name="bucket", client=client)

    with pytest.raises(StorageError) as excinfo:
        await gateway.store(b"data", "a.jpg", "photos")

    assert excinfo.value.retryable is True


@pytest.mark.asyncio
async def test_r2_fetch_reads_body_and_maps_missing_key():
    client = MagicMock()
    client.get_object.return_value = {"Body": BytesIO(b"data")}
    gateway = R2StorageGateway(bucket_name="bucket", client=client)

    assert await gateway.fetch("photos/a.jpg", "photos") == b"data"

    client.get_object.side_effect = _client_error("NoSuchKey")
    assert await gateway.fetch("photos/a.jpg", "photos") is None


@pytest.mark.asyncio
async def test_r2_temporary_url_checks_existence_first():
    client = MagicMock()
    client.head_object.side_effect = _client_error("404", "HeadObject")
    gateway = R2StorageGateway(bucket_name="bucket", client=client)

    assert await gateway.temporary_url("photos/a.jpg", "photos", ttl_minutes=60) is None
    client.generate_presigned_url.assert_not_called()


@pytest.mark.asyncio
async def test_r2_temporary_url_uses_ttl():
    client = MagicMock()
    client.generate_presigned_url.return_value = "https://signed.example.com/a.jpg"
    gateway = R2StorageGateway(bucket_name="bucket", client=client)

    url = await gateway.temporary_url("photos/a.jpg", "photos", ttl_minutes=60)

    assert url == "https://signed.example.com/a.jpg"
    client.generate_presigned_url.assert_called_once_with(
        ClientMethod="get_object",
        Params={"Bucket": "bucket", "Key": "photos/a.jpg"},
        ExpiresIn=3600,
    )


@pytest.mark.asyncio
async def test_r2_delete_failure_returns_false():
    client = MagicMock()
    client.delete_object.side_effect = _client_error("InternalError", "DeleteObject")
    gateway = R2StorageGateway(bucket_name="bucket", client=client)

    assert await gateway.delete("photos/a.jpg", "photos") is False
