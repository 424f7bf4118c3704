"""care_api -- FastAPI surface over the care modules."""

from care_api.app import create_app
from care_api.auth import Principal, TokenRegistry, hash_token, require_roles
from care_api.settings import ApiSettings

__all__ = [
    "ApiSettings",
    "Principal",
    "TokenRegistry",
    "create_app",
    "hash_token",
    "require_roles",
]
