import secrets
from datetime import datetime, timedelta

import bcrypt
from jose import JWTError, jwt

from .config import settings

ALGORITHM = "HS256"
TOKEN_TYPE = "access"

# No 0/O, 1/I: codes are read from an e-mail or a phone and typed by hand
ACCESS_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ACCESS_CODE_LENGTH = 8


def generate_access_code() -> str:
    """New access code from the OS CSPRNG (the code is a bearer secret)."""
    return "".join(secrets.choice(ACCESS_CODE_ALPHABET) for _ in range(ACCESS_CODE_LENGTH))


def normalize_access_code(code: str) -> str:
    return (code or "").strip().upper()


def hash_access_code(code: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.access_code_hash_rounds)
    return bcrypt.hashpw(normalize_access_code(code).encode("utf-8"), salt).decode("utf-8")


def verify_access_code(code: str, hashed: str) -> bool:
    if not code or not hashed:
        return False
    try:
        return bcrypt.checkpw(normalize_access_code(code).encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage
        return False


def create_session_token(email: str, credential_id: int) -> tuple[str, datetime]:
    """Signed bearer token. Returns (token, expires_at)."""
    now = datetime.utcnow()
    expires_at = now + timedelta(days=settings.session_token_days)
    claims = {
        "sub": email,
        "cid": credential_id,
        "type": TOKEN_TYPE,
        "iat": now,
        "exp": expires_at,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM), expires_at


def decode_session_token(token: str) -> dict | None:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != TOKEN_TYPE or not payload.get("sub") or "cid" not in payload:
        return None
    return payload
