import hashlib
import logging
import os
import secrets
import time

import jwt
from passlib.context import CryptContext

from rehearsal_scheduler.errors import AuthenticationError
from rehearsal_scheduler.schemas import UserCreate

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

JWT_ALGORITHM = 'HS256'
JWT_SECRET = os.environ.get('JWT_SECRET', 'dev-access-secret-change-me-in-production')
JWT_EXPIRE = int(os.environ.get('JWT_EXPIRE', 3600))
REFRESH_TOKEN_SECRET = os.environ.get('REFRESH_TOKEN_SECRET', 'dev-refresh-secret-change-me-in-production')
REFRESH_TOKEN_EXPIRE = int(os.environ.get('REFRESH_TOKEN_EXPIRE', 7 * 24 * 3600))
RESET_TOKEN_TTL = int(os.environ.get('RESET_TOKEN_TTL', 10 * 60))


# Passwords --------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password with a fresh salt (PBKDF2-SHA256)."""
    return pwd_context.hash(password)


def verify_password(password: str, hashed_password: str) -> bool:
    """Verify a password against a stored hash."""
    if not hashed_password:
        return False
    return pwd_context.verify(password, hashed_password)


def prepare_user_for_write(user: UserCreate) -> dict:
    """Turn a registration payload into the stored user document.

    This is the only place a plaintext password is read; the returned
    document carries ``passwordHash`` and no ``password`` key.
    """
    document = user.to_document()
    password = document.pop('password')
    document['passwordHash'] = hash_password(password)
    return document


# Signed tokens ----------------------------------------------------------

def _encode(user_id: int, secret: str, lifetime: int) -> str:
    now = int(time.time())
    return jwt.encode({'id': user_id, 'iat': now, 'exp': now + lifetime}, secret, algorithm=JWT_ALGORITHM)


def _decode(token: str, secret: str) -> int:
    if not token:
        raise AuthenticationError('Missing token')
    try:
        claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError('Token expired') from None
    except jwt.InvalidTokenError:
        raise AuthenticationError('Invalid token') from None
    user_id = claims.get('id')
    if not isinstance(user_id, int):
        raise AuthenticationError('Invalid token')
    return user_id


def create_access_token(user_id: int) -> str:
    return _encode(user_id, JWT_SECRET, JWT_EXPIRE)


def create_refresh_token(user_id: int) -> str:
    return _encode(user_id, REFRESH_TOKEN_SECRET, REFRESH_TOKEN_EXPIRE)


def decode_access_token(token: str) -> int:
    """Return the user id carried by a valid access token."""
    return _decode(token, JWT_SECRET)


def decode_refresh_token(token: str) -> int:
    return _decode(token, REFRESH_TOKEN_SECRET)


def issue_tokens(user_id: int) -> dict:
    return {
        'accessToken': create_access_token(user_id),
        'refreshToken': create_refresh_token(user_id),
        'tokenType': 'bearer',
        'expiresIn': JWT_EXPIRE,
    }


# Password reset ---------------------------------------------------------

def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def generate_reset_token(duration_seconds: int | None = None) -> tuple[str, str, int]:
    """Return ``(token, token_hash, expires_at)``.  Only the hash and the
    expiry are stored; the token itself goes to the user."""
    token = secrets.token_hex(20)
    ttl = RESET_TOKEN_TTL if duration_seconds is None else duration_seconds
    return token, hash_reset_token(token), int(time.time()) + ttl
