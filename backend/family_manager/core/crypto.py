import asyncio
import base64
import binascii
import logging
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

# --- Parameters ---
KDF_ITERS = 100_000
KEY_LEN = 32
SALT_LEN = 16
IV_LEN = 12
# salt(16) + iv(12) + at least a few ciphertext/tag bytes, base64 encoded
MIN_ENVELOPE_CHARS = 40


class CryptoError(Exception):
    pass


class DecryptError(CryptoError):
    """Raised by decrypt_strict when a value cannot be decrypted."""


def _derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_LEN, salt=salt, iterations=KDF_ITERS)
    return kdf.derive(passphrase.encode("utf-8"))


def _b64decode_strict(value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptError("invalid base64") from exc


def encrypt_value(plaintext: str, passphrase: str) -> str:
    """
    Encrypt one credential field.

    Returns base64(salt || iv || ciphertext). The GCM tag is part of the
    ciphertext. A fresh salt and IV are drawn on every call, so the same
    input never produces the same envelope twice.

    An empty plaintext or passphrase is returned unchanged: callers without
    an identity yet (anonymous flows) store the value as-is.
    """
    if not plaintext or not passphrase:
        return plaintext

    salt = secrets.token_bytes(SALT_LEN)
    iv = secrets.token_bytes(IV_LEN)
    aes = AESGCM(_derive_key(passphrase, salt))
    ct = aes.encrypt(iv, plaintext.encode("utf-8"), None)  # includes tag
    return base64.b64encode(salt + iv + ct).decode("ascii")


def decrypt_strict(envelope: str, passphrase: str) -> str:
    if not envelope:
        raise DecryptError("empty value")
    if not passphrase:
        raise DecryptError("no passphrase")
    if not isinstance(envelope, str) or not isinstance(passphrase, str):
        raise DecryptError("value and passphrase must be strings")

    blob = _b64decode_strict(envelope)
    if len(blob) < SALT_LEN + IV_LEN + 1:
        raise DecryptError("payload too short")
    salt, iv, ct = blob[:SALT_LEN], blob[SALT_LEN : SALT_LEN + IV_LEN], blob[SALT_LEN + IV_LEN :]

    try:
        key = _derive_key(passphrase, salt)
    except UnicodeEncodeError as exc:
        raise DecryptError("passphrase is not encodable") from exc
    aes = AESGCM(key)
    try:
        pt = aes.decrypt(iv, ct, None)
    except InvalidTag as exc:
        raise DecryptError("authentication failed") from exc
    try:
        return pt.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptError("invalid utf-8 payload") from exc


def decrypt_value(envelope: str, passphrase: str) -> str:
    """
    Always-succeeds decrypt for display paths.

    Anything that cannot be decrypted (legacy plaintext, wrong passphrase,
    tampered payload) comes back exactly as it went in.
    """
    if not envelope or not passphrase:
        return envelope
    try:
        return decrypt_strict(envelope, passphrase)
    except Exception as exc:
        logger.debug("decrypt passthrough: %s", exc)
        return envelope


def is_likely_encrypted(value) -> bool:
    """Shape check only: long enough and valid base64. Not a proof."""
    if not isinstance(value, str) or len(value) < MIN_ENVELOPE_CHARS:
        return False
    try:
        _b64decode_strict(value)
    except DecryptError:
        return False
    return True


async def encrypt_value_async(plaintext: str, passphrase: str) -> str:
    if not plaintext or not passphrase:
        return plaintext
    return await asyncio.to_thread(encrypt_value, plaintext, passphrase)


async def decrypt_value_async(envelope: str, passphrase: str) -> str:
    if not envelope or not passphrase:
        return envelope
    return await asyncio.to_thread(decrypt_value, envelope, passphrase)
