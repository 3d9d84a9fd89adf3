"""Access code generation/hashing and session tokens."""
import base64
import json
from datetime import datetime, timedelta

from jose import jwt

from skillscert.core import security
from skillscert.core.config import settings


def test_generated_codes_use_unambiguous_alphabet():
    codes = {security.generate_access_code() for _ in range(200)}
    assert len(codes) > 190
    for code in codes:
        assert len(code) == security.ACCESS_CODE_LENGTH
        assert set(code) <= set(security.ACCESS_CODE_ALPHABET)
        assert not set(code) & set("01IO")


def test_hash_round_trip():
    hashed = security.hash_access_code("AB23XQ7Z")
    assert hashed != "AB23XQ7Z"
    assert security.verify_access_code("AB23XQ7Z", hashed)


def test_one_character_mutation_fails():
    hashed = security.hash_access_code("AB23XQ7Z")
    for i in range(len("AB23XQ7Z")):
        replacement = "C" if "AB23XQ7Z"[i] != "C" else "D"
        mutated = "AB23XQ7Z"[:i] + replacement + "AB23XQ7Z"[i + 1 :]
        assert not security.verify_access_code(mutated, hashed)


def test_verify_tolerates_case_and_whitespace():
    hashed = security.hash_access_code("AB23XQ7Z")
    assert security.verify_access_code("  ab23xq7z ", hashed)


def test_verify_rejects_empty_and_malformed():
    hashed = security.hash_access_code("AB23XQ7Z")
    assert not security.verify_access_code("", hashed)
    assert not security.verify_access_code("AB23XQ7Z", "")
    assert not security.verify_access_code("AB23XQ7Z", "not-a-bcrypt-hash")


def test_session_token_round_trip():
    token, expires_at = security.create_session_token("alice@example.com", 7)
    payload = security.decode_session_token(token)
    assert payload["sub"] == "alice@example.com"
    assert payload["cid"] == 7
    assert expires_at > datetime.utcnow() + timedelta(days=settings.session_token_days - 1)


def test_session_token_rejects_tampering_and_other_types():
    token, _ = security.create_session_token("alice@example.com", 7)
    header, _, signature = token.split(".")
    forged_claims = base64.urlsafe_b64encode(json.dumps({"sub": "mallory@example.com", "cid": 8, "type": "access"}).encode()).rstrip(b"=").decode()
    assert security.decode_session_token(f"{header}.{forged_claims}.{signature}") is None
    other = jwt.encode({"sub": "alice@example.com", "cid": 7, "type": "refresh"}, settings.secret_key, algorithm="HS256")
    assert security.decode_session_token(other) is None
    foreign = jwt.encode({"sub": "alice@example.com", "cid": 7, "type": "access"}, "another-secret", algorithm="HS256")
    assert security.decode_session_token(foreign) is None


def test_expired_session_token_is_rejected():
    past = datetime.utcnow() - timedelta(minutes=5)
    token = jwt.encode(
        {"sub": "alice@example.com", "cid": 7, "type": "access", "iat": past - timedelta(days=1), "exp": past},
        settings.secret_key,
        algorithm="HS256",
    )
    assert security.decode_session_token(token) is None
