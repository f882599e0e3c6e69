"""
Salted password digests

Digests are stored as ``pbkdf2_sha256$<iterations>$<salt>$<hash>`` so the
iteration count can be raised later without invalidating old accounts.
"""

import base64
import os

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

ALGORITHM = "pbkdf2_sha256"
DEFAULT_ITERATIONS = 480000
SALT_BYTES = 16
KEY_LENGTH = 32


def _kdf(salt: bytes, iterations: int) -> PBKDF2HMAC:
    return PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )


def hash_password(secret: str, iterations: int = DEFAULT_ITERATIONS) -> str:
    """Derive a salted digest for ``secret``"""
    salt = os.urandom(SALT_BYTES)
    derived = _kdf(salt, iterations).derive(secret.encode("utf-8"))
    return "$".join([
        ALGORITHM,
        str(iterations),
        base64.b64encode(salt).decode(),
        base64.b64encode(derived).decode(),
    ])


def verify_password(secret: str, digest: str) -> bool:
    """Constant-time check of ``secret`` against a stored digest"""
    if not secret or not digest:
        return False
    try:
        algorithm, iterations, salt_b64, hash_b64 = digest.split("$")
        if algorithm != ALGORITHM:
            return False
        salt = base64.b64decode(salt_b64)
        expected = base64.b64decode(hash_b64)
        _kdf(salt, int(iterations)).verify(secret.encode("utf-8"), expected)
        return True
    except (ValueError, InvalidKey):
        return False
