"""Bearer token authentication for payment endpoints."""

from app.modules.auth.jwt import (
    CurrentUser,
    create_access_token,
    decode_token,
    get_current_user,
    get_optional_user,
    require_admin,
)

__all__ = [
    "CurrentUser",
    "create_access_token",
    "decode_token",
    "get_current_user",
    "get_optional_user",
    "require_admin",
]
