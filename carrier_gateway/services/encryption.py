"""
Encryption service for carrier credentials

Carrier API credentials stored on configuration records are encrypted at
rest with Fernet, keyed from SECRET_KEY. Also provides the redaction helper
applied to carrier payloads before they reach the logs.
"""
import base64
import json
import logging
import re
from typing import Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from carrier_gateway.core.config import settings

logger = logging.getLogger(__name__)

_ENCRYPTION_SALT = b"carrier_gateway_credentials_v1"

# Cached Fernet instance
_fernet: Optional[Fernet] = None


def _get_fernet() -> Fernet:
    """Get or create Fernet instance with derived key."""
    global _fernet

    if _fernet is None:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_ENCRYPTION_SALT,
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(settings.SECRET_KEY.encode()))
        _fernet = Fernet(key)

    return _fernet


def encrypt_credentials(credentials: Dict[str, str]) -> str:
    """
    Encrypt a credentials mapping for storage.

    Returns:
        Fernet token (text), or "" for an empty mapping
    """
    if not credentials:
        return ""

    try:
        payload = json.dumps(credentials, sort_keys=True)
        return _get_fernet().encrypt(payload.encode()).decode()
    except Exception as e:
        logger.error(f"Credential encryption failed: {type(e).__name__}")
        raise ValueError("Failed to encrypt carrier credentials")


def decrypt_credentials(ciphertext: Optional[str]) -> Dict[str, str]:
    """Decrypt a stored credentials token back to a mapping."""
    if not ciphertext:
        return {}

    try:
        decrypted = _get_fernet().decrypt(ciphertext.encode())
    except InvalidToken:
        logger.error("Credential decryption failed: invalid token (wrong key or corrupted data)")
        raise ValueError("Failed to decrypt carrier credentials - invalid token")

    data = json.loads(decrypted.decode())
    if not isinstance(data, dict):
        raise ValueError("Stored carrier credentials are not a key-value object")
    return {str(k): str(v) for k, v in data.items() if v is not None}


def sanitize_for_logging(text: str, max_length: int = 500) -> str:
    """
    Remove PII from text for safe logging.

    Args:
        text: Text that may contain PII (carrier error payloads echo addresses)
        max_length: Maximum length of result

    Returns:
        Sanitized text safe for logging
    """
    if not text:
        return ""

    sanitized = text[:max_length]

    patterns = [
        # Bearer tokens echoed back by gateways
        (r'(?i)bearer\s+[A-Za-z0-9._~+/=-]+', 'Bearer [TOKEN]'),
        # Phone numbers
        (r'\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b', '[PHONE]'),
        (r'\(\d{3}\)\s*\d{3}[-.\s]?\d{4}\b', '[PHONE]'),
        # Emails
        (r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b', '[EMAIL]'),
        # Postal codes
        (r'\b\d{5}-\d{4}\b', '[ZIP]'),
        (r'\b\d{5}\b', '[ZIP]'),
        (r'\b[A-Z]\d[A-Z]\s*\d[A-Z]\d\b', '[POSTAL]'),  # Canada
    ]

    for pattern, replacement in patterns:
        sanitized = re.sub(pattern, replacement, sanitized)

    return sanitized
