import base64
import binascii
import hashlib
import hmac
import os
import re

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
LEGACY_PBKDF2_ITERATIONS = 100_000
LEGACY_PBKDF2_LENGTH = 32
AUTH_PEPPER = os.getenv("AUTH_PEPPER", "")
ARGON2_TIME_COST = int(os.getenv("ARGON2_TIME_COST", "2"))
ARGON2_MEMORY_COST = int(os.getenv("ARGON2_MEMORY_COST", "102400"))
ARGON2_PARALLELISM = int(os.getenv("ARGON2_PARALLELISM", "8"))
ARGON2_HASH_LEN = int(os.getenv("ARGON2_HASH_LEN", "32"))
ARGON2_SALT_LEN = int(os.getenv("ARGON2_SALT_LEN", "16"))

PASSWORD_HASHER = PasswordHasher(
    time_cost=ARGON2_TIME_COST,
    memory_cost=ARGON2_MEMORY_COST,
    parallelism=ARGON2_PARALLELISM,
    hash_len=ARGON2_HASH_LEN,
    salt_len=ARGON2_SALT_LEN,
)


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def validate_email(email: str) -> bool:
    if not email:
        return False
    return bool(EMAIL_PATTERN.match(email))


def _pepper_password(password: str) -> str:
    if not AUTH_PEPPER:
        return password
    return f"{password}{AUTH_PEPPER}"


def hash_password(password: str) -> str:
    return PASSWORD_HASHER.hash(_pepper_password(password))


def _is_legacy_hash(stored: str) -> bool:
    return ":" in stored and not stored.startswith("$")


def _verify_legacy_pbkdf2(password: str, stored: str) -> bool:
    # salt and digest are standard base64, joined by a colon
    try:
        salt_b64, digest_b64 = stored.split(":", 1)
        salt = base64.b64decode(salt_b64.encode("ascii"), validate=True)
        expected = base64.b64decode(digest_b64.encode("ascii"), validate=True)
    except (ValueError, binascii.Error):
        return False
    if not salt or len(expected) != LEGACY_PBKDF2_LENGTH:
        return False
    candidate = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt,
        LEGACY_PBKDF2_ITERATIONS,
        dklen=LEGACY_PBKDF2_LENGTH,
    )
    return hmac.compare_digest(candidate, expected)


def verify_password(password: str, stored: str | None) -> bool:
    if not stored:
        return False
    if _is_legacy_hash(stored):
        return _verify_legacy_pbkdf2(password, stored)
    try:
        return PASSWORD_HASHER.verify(stored, _pepper_password(password))
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def needs_password_upgrade(stored: str) -> bool:
    if _is_legacy_hash(stored):
        return True
    if stored.startswith("$argon2id$"):
        return PASSWORD_HASHER.check_needs_rehash(stored)
    return True
