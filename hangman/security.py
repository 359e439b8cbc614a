"""Password hashing and HMAC-signed access/refresh tokens.

Token format: "<kind>:<user_id>:<exp>[:<nonce>].<hex sha256 hmac>"
"""

import hashlib
import hmac
import time
import uuid
from typing import Optional

from passlib.context import CryptContext

ACCESS = "access"
REFRESH = "refresh"

pwd = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return pwd.verify(password, password_hash)
    except ValueError:
        # unknown or malformed hash
        return False


def _signature(secret: str, payload: str) -> str:
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


def create_token(secret: str, user_id: int, kind: str, ttl_seconds: int, nonce: Optional[str] = None) -> str:
    exp = int(time.time()) + int(ttl_seconds)
    parts = [kind, str(user_id), str(exp)]
    if nonce:
        parts.append(nonce)
    payload = ":".join(parts)
    return f"{payload}.{_signature(secret, payload)}"


def verify_token(secret: str, token: Optional[str], kind: str) -> Optional[int]:
    """Return the user id of a valid, unexpired token of the given kind."""
    if not token:
        return None
    try:
        payload, sig = token.rsplit('.', 1)
    except ValueError:
        return None
    if not hmac.compare_digest(_signature(secret, payload), sig):
        return None
    fields = payload.split(':')
    if len(fields) < 3 or fields[0] != kind:
        return None
    try:
        user_id = int(fields[1])
        exp = int(fields[2])
    except ValueError:
        return None
    if exp <= time.time():
        return None
    return user_id


def create_access_token(secret: str, user_id: int, ttl_minutes: int) -> str:
    return create_token(secret, user_id, ACCESS, ttl_minutes * 60)


def create_refresh_token(secret: str, user_id: int, ttl_days: int) -> str:
    # nonce makes every refresh token unique so a stored one can be revoked
    return create_token(secret, user_id, REFRESH, ttl_days * 24 * 3600, nonce=uuid.uuid4().hex)
