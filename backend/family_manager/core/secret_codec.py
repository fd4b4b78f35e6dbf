from enum import Enum
from typing import Any, Dict, Optional, Tuple

from family_manager.core.crypto import (
    DecryptError,
    decrypt_strict,
    decrypt_value_async,
    encrypt_value_async,
    is_likely_encrypted,
)

CREDENTIAL_FIELD = "owner_password"


class FieldState(str, Enum):
    ENCRYPTED = "encrypted"
    PLAINTEXT = "plaintext"
    EMPTY = "empty"


def classify(value: Any) -> FieldState:
    if not value:
        return FieldState.EMPTY
    if is_likely_encrypted(value):
        return FieldState.ENCRYPTED
    return FieldState.PLAINTEXT


def decrypt_with_error(value: Any, passphrase: Optional[str]) -> Tuple[Any, Optional[str]]:
    """Like decrypt_value, but reports why the value came back untouched."""
    if not passphrase or not isinstance(value, str) or not value:
        return value, None
    try:
        return decrypt_strict(value, passphrase), None
    except DecryptError as ex:
        return value, str(ex)


async def encrypt_record(
    record: Dict[str, Any], passphrase: Optional[str], field: str = CREDENTIAL_FIELD
) -> Dict[str, Any]:
    out = dict(record)
    value = out.get(field)
    if isinstance(value, str) and passphrase:
        out[field] = await encrypt_value_async(value, passphrase)
    return out


async def decrypt_record(
    record: Dict[str, Any], passphrase: Optional[str], field: str = CREDENTIAL_FIELD
) -> Dict[str, Any]:
    out = dict(record)
    value = out.get(field)
    if isinstance(value, str) and passphrase:
        out[field] = await decrypt_value_async(value, passphrase)
    return out
