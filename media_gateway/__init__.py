"""Range-aware media streaming gateway for S3-compatible object stores."""

from .gateway import MediaGateway
from .settings import GatewaySettings, StoreSettings
from .store import ObjectLocator, S3ObjectStore

__all__ = [
    "GatewaySettings",
    "MediaGateway",
    "ObjectLocator",
    "S3ObjectStore",
    "StoreSettings",
]
