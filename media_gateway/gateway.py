from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import format_datetime
from typing import TYPE_CHECKING

from .ranges import (
    ByteRange,
    MalformedRangeError,
    UnsatisfiableRangeError,
    parse_range_header,
)
from .settings import load_gateway_settings_from_env, load_store_settings_from_env
from .store import (
    ObjectLocator,
    ObjectMetadata,
    ObjectMissingError,
    S3ObjectStore,
    StoreError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from .settings import GatewaySettings
    from .store import ObjectReader, ObjectStream

LOG = logging.getLogger("media_gateway.gateway")


@dataclass(frozen=True)
class Served:
    status_code: int
    headers: dict[str, str]
    body: Callable[[], AsyncIterator[bytes]]
    close: Callable[[], None]


@dataclass(frozen=True)
class ObjectNotFound:
    locator: ObjectLocator
    reason: str
    missing: bool = True


@dataclass(frozen=True)
class MalformedRange:
    header: str


@dataclass(frozen=True)
class RangeNotSatisfiable:
    size: int


@dataclass(frozen=True)
class SignedUrl:
    url: str
    expires_in: int


@dataclass(frozen=True)
class SigningFailure:
    locator: ObjectLocator
    reason: str


StreamResult = Served | ObjectNotFound | MalformedRange | RangeNotSatisfiable
SignResult = SignedUrl | SigningFailure


def _format_http_date(value: datetime) -> str:
    aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return format_datetime(aware.astimezone(UTC), usegmt=True)


class MediaGateway:
    """Serves stored media with byte-range support, or hands out signed URLs.

    The gateway holds no per-request state; the only shared resource is the
    store client and its connection pool.
    """

    def __init__(
        self, store: ObjectReader, settings: GatewaySettings, bucket: str
    ) -> None:
        self._store = store
        self._settings = settings
        self._bucket = bucket

    @property
    def settings(self) -> GatewaySettings:
        return self._settings

    @classmethod
    def from_env(cls) -> MediaGateway:
        """Create a MediaGateway backed by S3 from environment variables.

        Returns:
            MediaGateway configured from environment variables.
        """
        store_settings = load_store_settings_from_env()
        return cls(
            store=S3ObjectStore(store_settings),
            settings=load_gateway_settings_from_env(),
            bucket=store_settings.bucket,
        )

    async def startup(self) -> None:
        describe = getattr(self._store, "describe", None)
        LOG.info(
            "media gateway ready (store=%s, bucket=%s, chunk_size=%d)",
            describe() if callable(describe) else type(self._store).__name__,
            self._bucket,
            self._settings.chunk_size,
        )

    async def shutdown(self) -> None:
        self._store.close()

    def locate(self, key: str) -> ObjectLocator:
        return ObjectLocator(bucket=self._bucket, key=key)

    async def serve_object(
        self,
        locator: ObjectLocator,
        range_header: str | None,
    ) -> StreamResult:
        try:
            metadata = await self._store.head(locator)
        except StoreError as error:
            return self._not_found(locator, error)

        try:
            byte_range = parse_range_header(range_header, metadata.size)
        except MalformedRangeError:
            LOG.info("rejecting malformed range %r for %s", range_header, locator)
            return MalformedRange(header=range_header or "")
        except UnsatisfiableRangeError as error:
            LOG.info(
                "rejecting unsatisfiable range %r for %s (size=%d)",
                range_header,
                locator,
                error.size,
            )
            return RangeNotSatisfiable(size=metadata.size)

        headers = self._response_headers(metadata, byte_range)
        status_code = 200 if byte_range is None else 206

        try:
            # pin the GET to the revision whose size went into the headers
            stream = await self._store.open(
                locator, byte_range, if_match=metadata.etag
            )
        except StoreError as error:
            return self._not_found(locator, error)

        expected = metadata.size if byte_range is None else byte_range.length
        LOG.info(
            "streaming %s status=%d range=%s bytes=%d",
            locator,
            status_code,
            byte_range.as_header() if byte_range else "full",
            expected,
        )
        return Served(
            status_code=status_code,
            headers=headers,
            body=self._body_factory(stream, locator, expected),
            close=stream.close,
        )

    async def issue_signed_url(
        self, locator: ObjectLocator, ttl_seconds: int | None = None
    ) -> SignResult:
        ttl = self._effective_ttl(ttl_seconds)
        try:
            url = await self._store.presign(locator, ttl)
        except StoreError as error:
            LOG.warning("signed URL generation failed for %s: %s", locator, error)
            return SigningFailure(locator=locator, reason=str(error))
        LOG.info("signed URL issued for %s (expires_in=%d)", locator, ttl)
        return SignedUrl(url=url, expires_in=ttl)

    def _effective_ttl(self, ttl_seconds: int | None) -> int:
        if ttl_seconds is None or ttl_seconds <= 0:
            return self._settings.default_url_ttl
        if ttl_seconds > self._settings.max_url_ttl:
            LOG.debug(
                "clamping requested ttl %d to %d",
                ttl_seconds,
                self._settings.max_url_ttl,
            )
            return self._settings.max_url_ttl
        return ttl_seconds

    def _response_headers(
        self, metadata: ObjectMetadata, byte_range: ByteRange | None
    ) -> dict[str, str]:
        headers = {
            "Content-Type": metadata.content_type
            or self._settings.default_content_type,
            "Cache-Control": self._settings.cache_control,
            "Accept-Ranges": "bytes",
        }
        if metadata.etag:
            headers["ETag"] = metadata.etag
        if metadata.last_modified is not None:
            headers["Last-Modified"] = _format_http_date(metadata.last_modified)

        if byte_range is None:
            headers["Content-Length"] = str(metadata.size)
        else:
            headers["Content-Range"] = byte_range.content_range(metadata.size)
            headers["Content-Length"] = str(byte_range.length)
        return headers

    def _body_factory(
        self, stream: ObjectStream, locator: ObjectLocator, expected: int
    ) -> Callable[[], AsyncIterator[bytes]]:
        chunk_size = self._settings.chunk_size

        async def iterator() -> AsyncIterator[bytes]:
            sent = 0
            completed = False
            try:
                async for chunk in stream.iter_chunks(chunk_size):
                    sent += len(chunk)
                    yield chunk
                completed = True
            except StoreError as error:
                LOG.warning("upstream read failed for %s: %s", locator, error)
                raise
            finally:
                # closing is synchronous so it still runs inside a cancelled scope
                stream.close()
                if not completed:
                    LOG.info(
                        "stream for %s stopped early after %d of %d bytes",
                        locator,
                        sent,
                        expected,
                    )

        return iterator

    @staticmethod
    def _not_found(locator: ObjectLocator, error: StoreError) -> ObjectNotFound:
        missing = isinstance(error, ObjectMissingError)
        if missing:
            LOG.info("object not found: %s", locator)
        else:
            LOG.warning("store error while serving %s: %s", locator, error)
        return ObjectNotFound(locator=locator, reason=str(error), missing=missing)
