from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from hashlib import md5
from typing import TYPE_CHECKING

import pytest

from media_gateway.gateway import MediaGateway
from media_gateway.settings import GatewaySettings
from media_gateway.store import (
    ObjectLocator,
    ObjectMetadata,
    ObjectMissingError,
    ObjectStream,
    StoreError,
)

if TYPE_CHECKING:
    from collections.abc import Generator

    from botocore.client import BaseClient
    from pytest_databases._service import DockerService

    from media_gateway.ranges import ByteRange


BUCKET = "media"
VIDEO_KEY = "videos/lesson-1.mp4"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class RecordingBody:
    """Minimal stand-in for botocore's StreamingBody."""

    def __init__(self, data: bytes, read_error: Exception | None = None) -> None:
        self._data = data
        self._read_error = read_error
        self._offset = 0
        self.closed = False
        self.reads = 0

    def read(self, amt: int | None = None) -> bytes:
        if self.closed:
            msg = "read from closed body"
            raise ValueError(msg)
        self.reads += 1
        if self._read_error is not None and self._offset > 0:
            raise self._read_error
        if amt is None:
            amt = len(self._data) - self._offset
        chunk = self._data[self._offset : self._offset + amt]
        self._offset += len(chunk)
        return chunk

    def close(self) -> None:
        self.closed = True


@dataclass
class StoredObject:
    body: bytes
    content_type: str | None = None


@dataclass
class InMemoryObjectStore:
    objects: dict[tuple[str, str], StoredObject] = field(default_factory=dict)
    head_calls: list[ObjectLocator] = field(default_factory=list)
    open_calls: list[tuple[ObjectLocator, ByteRange | None]] = field(
        default_factory=list
    )
    presign_calls: list[tuple[ObjectLocator, int]] = field(default_factory=list)
    bodies: list[RecordingBody] = field(default_factory=list)
    head_error: StoreError | None = None
    open_error: StoreError | None = None
    presign_error: StoreError | None = None
    read_error: Exception | None = None
    closed: bool = False

    def put(
        self, key: str, body: bytes, content_type: str | None = None, bucket: str = BUCKET
    ) -> None:
        self.objects[(bucket, key)] = StoredObject(body=body, content_type=content_type)

    def _lookup(self, locator: ObjectLocator) -> StoredObject:
        try:
            return self.objects[(locator.bucket, locator.key)]
        except KeyError:
            raise ObjectMissingError(f"{locator} does not exist") from None

    def _metadata(self, stored: StoredObject) -> ObjectMetadata:
        return ObjectMetadata(
            size=len(stored.body),
            content_type=stored.content_type,
            etag=f'"{md5(stored.body).hexdigest()}"',
            last_modified=datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC),
        )

    async def head(self, locator: ObjectLocator) -> ObjectMetadata:
        self.head_calls.append(locator)
        if self.head_error is not None:
            raise self.head_error
        return self._metadata(self._lookup(locator))

    async def open(
        self,
        locator: ObjectLocator,
        byte_range: ByteRange | None = None,
        if_match: str | None = None,
    ) -> ObjectStream:
        self.open_calls.append((locator, byte_range))
        if self.open_error is not None:
            raise self.open_error
        stored = self._lookup(locator)
        metadata = self._metadata(stored)
        if if_match is not None and if_match != metadata.etag:
            msg = f"store error PreconditionFailed for {locator}"
            raise StoreError(msg)
        data = stored.body
        if byte_range is not None:
            data = data[byte_range.start : byte_range.end + 1]
        body = RecordingBody(data, self.read_error)
        self.bodies.append(body)
        return ObjectStream(body, metadata)

    async def presign(self, locator: ObjectLocator, ttl_seconds: int) -> str:
        self.presign_calls.append((locator, ttl_seconds))
        if self.presign_error is not None:
            raise self.presign_error
        return (
            f"https://signed.example/{locator.bucket}/{locator.key}"
            f"?X-Amz-Expires={ttl_seconds}&X-Amz-Signature={len(self.presign_calls)}"
        )

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def video_bytes() -> bytes:
    return bytes(range(256)) * 40


@pytest.fixture
def store(video_bytes: bytes) -> InMemoryObjectStore:
    store = InMemoryObjectStore()
    store.put(VIDEO_KEY, video_bytes, content_type="video/mp4")
    return store


@pytest.fixture
def gateway_settings() -> GatewaySettings:
    return GatewaySettings(chunk_size=1000)


@pytest.fixture
def gateway(
    store: InMemoryObjectStore, gateway_settings: GatewaySettings
) -> MediaGateway:
    return MediaGateway(store=store, settings=gateway_settings, bucket=BUCKET)


# MinIO-backed fixtures for the opt-in integration tests.


@dataclass
class MinioService:
    endpoint: str
    access_key: str
    secret_key: str
    secure: bool


@pytest.fixture(scope="session")
def minio_access_key() -> str:
    return os.getenv("MINIO_ACCESS_KEY", "minio")


@pytest.fixture(scope="session")
def minio_secret_key() -> str:
    return os.getenv("MINIO_SECRET_KEY", "minio123")


@pytest.fixture(scope="session")
def minio_secure() -> bool:
    return os.getenv("MINIO_SECURE", "false").lower() in {
        "true",
        "1",
        "yes",
        "y",
        "t",
        "on",
    }


@pytest.fixture(scope="session")
def minio_service_name() -> str:
    return "minio-media-gateway"


@pytest.fixture(scope="session")
def minio_service(
    docker_service: DockerService,
    minio_access_key: str,
    minio_secret_key: str,
    minio_secure: bool,
    minio_service_name: str,
) -> Generator[MinioService]:
    from urllib.error import URLError
    from urllib.request import Request, urlopen

    from pytest_databases.types import ServiceContainer

    def check(_service: ServiceContainer) -> bool:
        scheme = "https" if minio_secure else "http"
        url = f"{scheme}://{_service.host}:{_service.port}/minio/health/ready"
        try:
            with urlopen(url=Request(url, method="GET"), timeout=10) as response:
                return response.status == 200
        except (URLError, ConnectionError):
            return False

    with docker_service.run(
        image="quay.io/minio/minio",
        name=minio_service_name,
        command="server /data",
        container_port=9000,
        timeout=20,
        pause=0.5,
        env={
            "MINIO_ROOT_USER": minio_access_key,
            "MINIO_ROOT_PASSWORD": minio_secret_key,
        },
        check=check,
    ) as service:
        yield MinioService(
            endpoint=f"{service.host}:{service.port}",
            access_key=minio_access_key,
            secret_key=minio_secret_key,
            secure=minio_secure,
        )


@pytest.fixture
def minio_s3_client(minio_service: MinioService) -> BaseClient:
    import boto3
    from botocore.config import Config

    scheme = "https" if minio_service.secure else "http"
    return boto3.client(
        "s3",
        endpoint_url=f"{scheme}://{minio_service.endpoint}",
        aws_access_key_id=minio_service.access_key,
        aws_secret_access_key=minio_service.secret_key,
        region_name="us-east-1",
        config=Config(s3={"addressing_style": "path"}),
    )


@pytest.fixture
def minio_env(
    minio_service: MinioService, monkeypatch: pytest.MonkeyPatch
) -> dict[str, str]:
    scheme = "https" if minio_service.secure else "http"
    values = {
        "MEDIA_GATEWAY_STORE_ENDPOINT": f"{scheme}://{minio_service.endpoint}",
        "MEDIA_GATEWAY_STORE_ACCESS_KEY_ID": minio_service.access_key,
        "MEDIA_GATEWAY_STORE_SECRET_ACCESS_KEY": minio_service.secret_key,
        "MEDIA_GATEWAY_STORE_REGION": "us-east-1",
        "MEDIA_GATEWAY_STORE_ADDRESSING_STYLE": "path",
        "MEDIA_GATEWAY_BUCKET": "media-integration",
    }
    for key, value in values.items():
        monkeypatch.setenv(key, value)
    return values
