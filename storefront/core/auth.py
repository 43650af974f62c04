import re
from typing import Optional

import jwt
from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from storefront.core.errors import UnauthorizedError, ValidationError
from storefront.security.utils import decode_token
from storefront.store.cart_store import CartIdentity

GUEST_HEADER = "X-Guest-Session"
_GUEST_TOKEN = re.compile(r"^[A-Za-z0-9_-]{8,128}$")

security = HTTPBearer(auto_error=False)


def get_optional_claims(creds: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Optional[dict]:
    if not creds:
        return None
    try:
        payload = decode_token(creds.credentials)
    except jwt.PyJWTError:
        raise UnauthorizedError("Invalid token")
    if payload.get("type") != "access" or payload.get("uid") is None:
        raise UnauthorizedError("Invalid access token")
    return payload  # contains sub (email), uid, role


def get_current_identity(claims: Optional[dict] = Depends(get_optional_claims)) -> dict:
    if claims is None:
        raise UnauthorizedError()
    return claims


def require_admin(identity: dict = Depends(get_current_identity)) -> dict:
    if identity.get("role") != "admin":
        raise UnauthorizedError("Admin access required")
    return identity


def parse_guest_token(token: Optional[str]) -> Optional[CartIdentity]:
    if token is None or token == "":
        return None
    if not _GUEST_TOKEN.match(token):
        raise ValidationError(f"{GUEST_HEADER} must be 8-128 characters of letters, digits, '-' or '_'")
    return CartIdentity.guest(token)


def get_guest_identity(x_guest_session: Optional[str] = Header(default=None, alias=GUEST_HEADER)) -> Optional[CartIdentity]:
    return parse_guest_token(x_guest_session)


def get_cart_identity(claims: Optional[dict] = Depends(get_optional_claims),
                      guest: Optional[CartIdentity] = Depends(get_guest_identity)) -> CartIdentity:
    if claims is not None:
        return CartIdentity.user(claims["uid"])
    if guest is not None:
        return guest
    raise UnauthorizedError("Authentication or guest session required")
