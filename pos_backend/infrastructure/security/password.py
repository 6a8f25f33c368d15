"""Password hashing for store users (bcrypt with SHA-256 pre-hash).

Bcrypt truncates inputs at 72 bytes; pre-hashing with SHA-256 yields a
fixed-length input so long passwords are not silently truncated.
"""

import base64
import hashlib
import secrets
import string

import bcrypt

_SPECIAL_CHARS = "!@#$%^&*-_=+"


def _prehash(password: str) -> bytes:
    return base64.b64encode(hashlib.sha256(password.encode("utf-8")).digest())


def get_password_hash(password: str) -> str:
    """Return the bcrypt hash stored in a user document."""
    return bcrypt.hashpw(_prehash(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Return True if plain_password matches hashed_password (False on a malformed hash)."""
    try:
        return bool(bcrypt.checkpw(_prehash(plain_password), hashed_password.encode("utf-8")))
    except (ValueError, TypeError):
        return False


def generate_secure_password(length: int = 16) -> str:
    """Random password with at least one lowercase, uppercase, digit and special character."""
    rng = secrets.SystemRandom()
    alphabet = string.ascii_letters + string.digits + _SPECIAL_CHARS
    chars = [
        rng.choice(string.ascii_lowercase),
        rng.choice(string.ascii_uppercase),
        rng.choice(string.digits),
        rng.choice(_SPECIAL_CHARS),
    ]
    chars.extend(rng.choice(alphabet) for _ in range(max(0, length - len(chars))))
    rng.shuffle(chars)
    return "".join(chars)
