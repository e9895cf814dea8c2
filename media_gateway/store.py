from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import TYPE_CHECKING, Any, Protocol

from anyio import to_thread
from boto3.session import Session
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Mapping

    from .ranges import ByteRange
    from .settings import StoreSettings

LOG = logging.getLogger("media_gateway.store")

NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound", "NoSuchBucket"})


async def _run_sync(func: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
    return await to_thread.run_sync(partial(func, *args, **kwargs))


class StoreError(Exception):
    """The object store failed to answer a request."""


class ObjectMissingError(StoreError):
    """The object store reported that the object does not exist."""


@dataclass(frozen=True)
class ObjectLocator:
    bucket: str
    key: str

    def __str__(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


@dataclass(frozen=True)
class ObjectMetadata:
    size: int
    content_type: str | None = None
    etag: str | None = None
    last_modified: datetime | None = None


class ObjectStream:
    """A live response body from the store, read incrementally."""

    def __init__(self, body: Any, metadata: ObjectMetadata) -> None:
        self._body = body
        self.metadata = metadata
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def iter_chunks(self, chunk_size: int) -> AsyncIterator[bytes]:
        while not self._closed:
            try:
                chunk = await _run_sync(self._body.read, chunk_size)
            except BotoCoreError as error:
                msg = f"reading object body failed: {error}"
                raise StoreError(msg) from error
            if not chunk:
                break
            yield chunk

    def close(self) -> None:
        """Release the upstream connection, dropping any unread bytes."""
        if self._closed:
            return
        self._closed = True
        self._body.close()


class ObjectReader(Protocol):
    async def head(self, locator: ObjectLocator) -> ObjectMetadata: ...

    async def open(
        self,
        locator: ObjectLocator,
        byte_range: ByteRange | None = None,
        if_match: str | None = None,
    ) -> ObjectStream: ...

    async def presign(self, locator: ObjectLocator, ttl_seconds: int) -> str: ...

    def close(self) -> None: ...


def _metadata_from_result(result: Mapping[str, Any]) -> ObjectMetadata:
    return ObjectMetadata(
        size=int(result.get("ContentLength", 0)),
        content_type=result.get("ContentType") or None,
        etag=result.get("ETag"),
        last_modified=result.get("LastModified"),
    )


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class S3ObjectStore:
    """``ObjectReader`` backed by boto3, for R2, MinIO or AWS S3."""

    def __init__(self, settings: StoreSettings) -> None:
        self._settings = settings
        self._client = self._build_client()

    def _build_client(self):
        session = Session(
            aws_access_key_id=self._settings.access_key,
            aws_secret_access_key=self._settings.secret_key,
            aws_session_token=self._settings.session_token,
            region_name=self._settings.region,
        )
        return session.client(
            "s3",
            endpoint_url=self._settings.endpoint,
            config=BotoConfig(
                signature_version="s3v4",
                retries={"total_max_attempts": 1, "mode": "standard"},
                connect_timeout=self._settings.connect_timeout,
                read_timeout=self._settings.read_timeout,
                max_pool_connections=self._settings.max_pool_connections,
                s3={"addressing_style": self._settings.addressing_style},
            ),
        )

    def describe(self) -> str:
        endpoint = self._settings.endpoint or "aws"
        return f"{endpoint} ({self._settings.region})"

    async def head(self, locator: ObjectLocator) -> ObjectMetadata:
        try:
            result = await _run_sync(
                self._client.head_object, Bucket=locator.bucket, Key=locator.key
            )
        except ClientError as error:
            raise self._translate(error, locator) from error
        except BotoCoreError as error:
            msg = f"HeadObject failed for {locator}: {error}"
            raise StoreError(msg) from error
        return _metadata_from_result(result)

    async def open(
        self,
        locator: ObjectLocator,
        byte_range: ByteRange | None = None,
        if_match: str | None = None,
    ) -> ObjectStream:
        get_kwargs: dict[str, Any] = {"Bucket": locator.bucket, "Key": locator.key}
        if byte_range is not None:
            get_kwargs["Range"] = byte_range.as_header()
        if if_match is not None:
            get_kwargs["IfMatch"] = if_match
        try:
            result = await _run_sync(self._client.get_object, **get_kwargs)
        except ClientError as error:
            raise self._translate(error, locator) from error
        except BotoCoreError as error:
            msg = f"GetObject failed for {locator}: {error}"
            raise StoreError(msg) from error
        return ObjectStream(result["Body"], _metadata_from_result(result))

    async def presign(self, locator: ObjectLocator, ttl_seconds: int) -> str:
        try:
            return await _run_sync(
                self._client.generate_presigned_url,
                "get_object",
                Params={"Bucket": locator.bucket, "Key": locator.key},
                ExpiresIn=ttl_seconds,
            )
        except (ClientError, BotoCoreError) as error:
            msg = f"presigning failed for {locator}: {error}"
            raise StoreError(msg) from error

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _translate(error: ClientError, locator: ObjectLocator) -> StoreError:
        code = _error_code(error)
        if code in NOT_FOUND_CODES:
            return ObjectMissingError(f"{locator} does not exist")
        LOG.debug("store error code=%s for %s", code, locator)
        return StoreError(f"store error {code or 'unknown'} for {locator}: {error}")
