import secrets
from datetime import datetime, timezone
from typing import Any, Dict

from jose import JWTError, jwt


INVITE_TOKEN_BYTES = 18


def read_token_claims(token: str) -> Dict[str, Any]:
    """Return the claims of an access token without verifying its signature.

    The signing secret lives with the hosted identity service; the client only
    needs `sub` and `exp` to reason about its own session.
    """
    try:
        return jwt.get_unverified_claims(token)
    except JWTError as exc:
        raise ValueError("Invalid token") from exc


def token_expires_at(token: str) -> int | None:
    try:
        claims = read_token_claims(token)
    except ValueError:
        return None
    exp = claims.get("exp")
    return int(exp) if exp is not None else None


def now_timestamp() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def generate_invite_token() -> str:
    return secrets.token_urlsafe(INVITE_TOKEN_BYTES)
