"""Credential vault: machine-bound key and AES-CBC envelopes for stored secrets."""

import hashlib
import os
import platform
import re
import socket
import sys
import threading
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .config import Config
from .exceptions import DecryptionError, EncryptionError
from .logger import Logger

ENVELOPE_SEPARATOR = ":"
IV_LENGTH = 16
KEY_LENGTH = 32

# <32 hex iv>:<whole AES blocks of hex ciphertext>
_ENVELOPE_RE = re.compile(r"^[0-9a-fA-F]{32}:(?:[0-9a-fA-F]{32})+$")


def machine_fingerprint() -> str:
    """Hostname + OS platform + architecture, stable for one installation."""
    return socket.gethostname() + sys.platform + platform.machine()


def derive_machine_key() -> bytes:
    return hashlib.sha256(machine_fingerprint().encode("utf-8")).digest()


class CredentialVault:
    """Encrypts secret fields with a key cached in the installation's key file."""

    def __init__(self, config: Config):
        self.config = config
        self.logger = Logger.get_logger(__name__)
        self._key: Optional[bytes] = None
        self._key_lock = threading.Lock()

    @property
    def key_file(self) -> Path:
        return self.config.key_file

    def _load_key(self) -> bytes:
        """Read the key file, deriving and writing it on first use."""
        with self._key_lock:
            if self._key is not None:
                return self._key

            try:
                if self.key_file.exists():
                    key = self.key_file.read_bytes()
                else:
                    key = derive_machine_key()
                    self.key_file.parent.mkdir(
                        mode=self.config.config_dir_permissions, parents=True, exist_ok=True
                    )
                    fd = os.open(
                        self.key_file,
                        os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
                        self.config.key_file_permissions,
                    )
                    with os.fdopen(fd, "wb") as f:
                        f.write(key)
                    self.logger.info(f"Created encryption key file {self.key_file}")
            except OSError as e:
                raise EncryptionError(f"Failed to load encryption key: {e}") from e

            if len(key) != KEY_LENGTH:
                raise EncryptionError(
                    f"Encryption key file {self.key_file} is invalid "
                    f"(expected {KEY_LENGTH} bytes, got {len(key)})"
                )
            self._key = key
            return key

    @staticmethod
    def is_envelope(value: Optional[str]) -> bool:
        """True when ``value`` already has the ``iv:ciphertext`` hex shape."""
        return bool(value) and _ENVELOPE_RE.match(value) is not None

    def encrypt(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` under a fresh random IV."""
        key = self._load_key()
        iv = os.urandom(IV_LENGTH)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return iv.hex() + ENVELOPE_SEPARATOR + ciphertext.hex()

    def decrypt(self, envelope: str) -> str:
        """Decrypt an envelope produced by :meth:`encrypt`."""
        if not self.is_envelope(envelope):
            raise DecryptionError("Malformed encrypted value")

        key = self._load_key()
        iv_hex, ciphertext_hex = envelope.split(ENVELOPE_SEPARATOR)
        iv = bytes.fromhex(iv_hex)
        ciphertext = bytes.fromhex(ciphertext_hex)

        try:
            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            data = unpadder.update(padded) + unpadder.finalize()
            return data.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            # wrong key shows up as bad padding or garbage bytes
            raise DecryptionError(f"Failed to decrypt value: {e}") from e

    def seal(self, value: Optional[str]) -> Optional[str]:
        """Encrypt a secret for storage unless it is empty or already an envelope."""
        if not value:
            return None
        if self.is_envelope(value):
            return value
        return self.encrypt(value)

    def reveal(self, value: Optional[str]) -> Optional[str]:
        """Decrypt a stored secret; plaintext awaiting migration passes through."""
        if not value:
            return None
        if self.is_envelope(value):
            return self.decrypt(value)
        return value
