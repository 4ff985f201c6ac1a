"""Encryption utilities for stored provider credentials."""

import json
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from app.core.config import settings


_fernet: Fernet | None = None


def get_fernet() -> Fernet:
    """Get or create Fernet instance for encryption/decryption."""
    global _fernet
    if _fernet is None:
        if not settings.FERNET_KEY:
            raise RuntimeError(
                "FERNET_KEY not configured. "
                'Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
            )
        _fernet = Fernet(settings.FERNET_KEY.encode())
    return _fernet


def encrypt_json(data: dict[str, Any]) -> str:
    """Encrypt a credentials dict for storage."""
    return get_fernet().encrypt(json.dumps(data).encode()).decode()


def decrypt_json(encrypted: str) -> dict[str, Any]:
    """Decrypt stored credentials."""
    if not encrypted:
        return {}
    try:
        return json.loads(get_fernet().decrypt(encrypted.encode()).decode())
    except InvalidToken:
        raise ValueError("Invalid or corrupted encrypted credentials")
