from __future__ import annotations

import re
from typing import TYPE_CHECKING, Annotated, Any

from litestar import Litestar, Request, get
from litestar.background_tasks import BackgroundTask
from litestar.config.cors import CORSConfig
from litestar.logging.config import LoggingConfig
from litestar.params import Parameter
from litestar.plugins.prometheus import PrometheusConfig, PrometheusController
from litestar.response import Response, Stream

from .gateway import (
    MalformedRange,
    MediaGateway,
    ObjectNotFound,
    RangeNotSatisfiable,
    Served,
    SignedUrl,
    SigningFailure,
)

if TYPE_CHECKING:
    from .gateway import SignResult, StreamResult

prometheus_config = PrometheusConfig(app_name="media_gateway", prefix="media_gateway")

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _error(status_code: int, message: str, **headers: str) -> Response[dict[str, Any]]:
    return Response(
        content={"success": False, "message": message},
        status_code=status_code,
        headers=headers or None,
    )


def parse_expires(value: str | None) -> int | None:
    """Read the leading integer of an ``expires`` query value, if any."""
    if value is None:
        return None
    match = _LEADING_INT.match(value)
    if match is None:
        return None
    return int(match.group(1))


def stream_response(result: StreamResult) -> Response[Any]:
    if isinstance(result, Served):
        headers = dict(result.headers)
        media_type = headers.pop("Content-Type")
        return Stream(
            content=result.body,
            status_code=result.status_code,
            headers=headers,
            media_type=media_type,
            # runs after send_body even if the client left before the first chunk
            background=BackgroundTask(result.close),
        )
    if isinstance(result, ObjectNotFound):
        return _error(404, "Video not found")
    if isinstance(result, MalformedRange):
        return _error(400, "Malformed Range header")
    if isinstance(result, RangeNotSatisfiable):
        return _error(
            416,
            "Requested range not satisfiable",
            **{"Content-Range": f"bytes */{result.size}"},
        )
    msg = f"unexpected stream result {result!r}"
    raise TypeError(msg)


def signed_url_response(result: SignResult) -> Response[dict[str, Any]]:
    if isinstance(result, SignedUrl):
        return Response(
            content={
                "success": True,
                "url": result.url,
                "expiresIn": result.expires_in,
            }
        )
    if isinstance(result, SigningFailure):
        return _error(500, "Failed to generate streaming URL")
    msg = f"unexpected signing result {result!r}"
    raise TypeError(msg)


def create_app(gateway: MediaGateway | None = None) -> Litestar:
    """Create the media gateway ASGI application."""
    if gateway is None:
        gateway = MediaGateway.from_env()

    @get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @get("/stream/r2/{folder:str}/{filename:str}")
    async def stream_object(
        request: Request,
        folder: Annotated[str, Parameter(description="Key prefix")],
        filename: Annotated[str, Parameter(description="Object name")],
    ) -> Response[Any]:
        locator = gateway.locate(f"{folder}/{filename}")
        result = await gateway.serve_object(locator, request.headers.get("range"))
        return stream_response(result)

    @get("/stream/r2-url/{folder:str}/{filename:str}")
    async def signed_url(
        folder: Annotated[str, Parameter(description="Key prefix")],
        filename: Annotated[str, Parameter(description="Object name")],
        expires: Annotated[
            str | None, Parameter(description="URL lifetime in seconds")
        ] = None,
    ) -> Response[dict[str, Any]]:
        locator = gateway.locate(f"{folder}/{filename}")
        result = await gateway.issue_signed_url(locator, parse_expires(expires))
        return signed_url_response(result)

    async def startup(app: Litestar) -> None:
        await gateway.startup()

    async def shutdown(app: Litestar) -> None:
        await gateway.shutdown()

    cors_config = CORSConfig(
        allow_origins=["*"],
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Content-Length", "Content-Range", "Accept-Ranges", "ETag"],
    )

    logging_config = LoggingConfig(
        loggers={"media_gateway": {"level": gateway.settings.log_level}},
    )

    return Litestar(
        route_handlers=[health, stream_object, signed_url, PrometheusController],
        on_startup=[startup],
        on_shutdown=[shutdown],
        cors_config=cors_config,
        logging_config=logging_config,
        middleware=[prometheus_config.middleware],
    )


app = create_app()
