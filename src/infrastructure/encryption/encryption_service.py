"""Encryption service for persisted device state.

The device state file holds the validation payload, which echoes the access
password, and the device key. This service encrypts that file at rest.

Security Impact:
    - Uses AES-128-CBC with HMAC via Fernet (symmetric encryption)
    - Keys come from configuration or are derived from a passphrase
    - Decryption failures are reported, never silently ignored

Architecture:
    - Infrastructure layer component
    - Used by the device state store adapter
"""

import base64
import json
import logging
import os
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

DEFAULT_SALT = "offline-care-lookup-salt"
KDF_ITERATIONS = 100000


class DecryptionError(ValueError):
    """Raised when encrypted state cannot be decrypted with the configured key."""
    pass


class EncryptionService:
    """Service for encrypting/decrypting device state.

    Example Usage:
        ```python
        service = EncryptionService(key=Fernet.generate_key())
        token = service.encrypt_record({"cod_ips": "IPS001"})
        service.decrypt_record(token)
        ```
    """

    def __init__(self, key: Optional[bytes] = None):
        """Initialize encryption service.

        Parameters:
            key: URL-safe base64-encoded 32-byte Fernet key (if None, derived from env)

        Raises:
            ValueError: If the key is not a valid Fernet key
        """
        if key is None:
            key = self.derive_key_from_env()

        try:
            self.cipher = Fernet(key)
        except ValueError as e:
            logger.error("Invalid encryption key format")
            raise ValueError("Invalid encryption key format. Key must be base64-encoded 32-byte key.") from e

    @staticmethod
    def derive_key(passphrase: str, salt: str = DEFAULT_SALT) -> bytes:
        """Derive a Fernet key from a passphrase using PBKDF2-SHA256."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt.encode('utf-8'),
            iterations=KDF_ITERATIONS,
        )
        return base64.urlsafe_b64encode(kdf.derive(passphrase.encode('utf-8')))

    @classmethod
    def derive_key_from_env(cls) -> bytes:
        """Read OCL_STATE_ENCRYPTION_KEY or derive from OCL_STATE_PASSPHRASE.

        Raises:
            ValueError: If neither variable is set
        """
        key_str = os.getenv('OCL_STATE_ENCRYPTION_KEY')
        if key_str:
            return key_str.encode('utf-8')

        passphrase = os.getenv('OCL_STATE_PASSPHRASE')
        if passphrase:
            salt = os.getenv('OCL_STATE_SALT', DEFAULT_SALT)
            return cls.derive_key(passphrase, salt)

        raise ValueError(
            "No OCL_STATE_ENCRYPTION_KEY or OCL_STATE_PASSPHRASE found; "
            "cannot encrypt device state."
        )

    def encrypt_record(self, record_dict: Dict[str, Any]) -> bytes:
        """Encrypt an entire state dictionary as JSON.

        Parameters:
            record_dict: Dictionary to encrypt

        Returns:
            bytes: Encrypted JSON bytes
        """
        json_str = json.dumps(record_dict, default=str, sort_keys=True)
        return self.cipher.encrypt(json_str.encode('utf-8'))

    def decrypt_record(self, encrypted: bytes) -> Dict[str, Any]:
        """Decrypt an entire state dictionary.

        Raises:
            DecryptionError: If the token is invalid or the key is wrong
        """
        try:
            json_str = self.cipher.decrypt(encrypted).decode('utf-8')
        except InvalidToken as e:
            logger.error("Failed to decrypt device state: invalid token or wrong key")
            raise DecryptionError("Device state cannot be decrypted with the configured key") from e
        return json.loads(json_str)
