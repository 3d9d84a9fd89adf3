"""
Reversible encryption of issued access codes.

The login path only ever checks the bcrypt hash. The Fernet copy exists so the
same code can be handed out again (repeat verify-payment, resend-code) without
keeping plaintext in the database. Keys come from ACCESS_CODE_KEY (SECRET_KEY
when unset); ACCESS_CODE_PREVIOUS_KEYS keeps older ciphertexts readable after a
key change.
"""
import base64
import logging

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from skillscert.core.config import settings

logger = logging.getLogger(__name__)

_ENCRYPTION_SALT = b"skillscert_access_codes_v1"

# (key material, MultiFernet): rebuilt when the configured keys change
_fernet_cache: tuple[tuple[str, ...], MultiFernet] | None = None


def _derive(secret: str) -> Fernet:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_ENCRYPTION_SALT,
        iterations=100000,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(secret.encode())))


def _key_material() -> tuple[str, ...]:
    primary = (settings.access_code_key or "").strip() or settings.secret_key or ""
    previous = [k.strip() for k in (settings.access_code_previous_keys or "").split(",") if k.strip()]
    return (primary, *[k for k in previous if k != primary])


def _get_fernet() -> MultiFernet:
    global _fernet_cache

    keys = _key_material()
    if _fernet_cache is None or _fernet_cache[0] != keys:
        # First key encrypts; all of them are tried on decrypt
        _fernet_cache = (keys, MultiFernet([_derive(k) for k in keys]))
    return _fernet_cache[1]


def encrypt_code(code: str) -> str:
    if not code:
        raise ValueError("Empty access code")
    return _get_fernet().encrypt(code.encode()).decode()


def decrypt_code(ciphertext: str) -> str:
    """
    Raises ValueError when the ciphertext cannot be read with any configured
    key; callers then treat the code as not re-deliverable.
    """
    if not ciphertext:
        raise ValueError("No stored access code")
    try:
        return _get_fernet().decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        logger.error("Access code decryption failed: invalid token (unknown key or corrupted data)")
        raise ValueError("Failed to decrypt access code")
