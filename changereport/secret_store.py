"""Credential encryption bound to the identity running the report.

Tokens produced on one account/host pair cannot be decrypted by another
unless both share ``CHANGE_REPORT_SECRET_KEY``.
"""

import base64
from dataclasses import dataclass, field
import getpass
import socket

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


KDF_SALT = b"change-report-secret-store"
KDF_ITERATIONS = 390_000


class SecretStoreError(RuntimeError):
    pass


def default_identity() -> str:
    return f"{getpass.getuser()}@{socket.gethostname()}"


class SecretStore:
    def __init__(self, identity: str | None = None) -> None:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=KDF_SALT,
            iterations=KDF_ITERATIONS,
        )
        material = (identity or default_identity()).encode("utf-8")
        self._cipher = Fernet(base64.urlsafe_b64encode(kdf.derive(material)))

    def encrypt(self, plaintext: str) -> str:
        return self._cipher.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._cipher.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as exc:
            raise SecretStoreError("secret cannot be decrypted by the current identity") from exc


@dataclass(frozen=True)
class CredentialHandle:
    """Username plus an encrypted secret that is only decrypted on demand."""

    username: str
    token: str | None = field(default=None, repr=False)
    store: SecretStore | None = field(default=None, repr=False, compare=False)

    @property
    def has_secret(self) -> bool:
        return bool(self.token)

    def reveal(self) -> str:
        if not self.token:
            return ""
        if self.store is None:
            raise SecretStoreError("credential has no secret store attached")
        return self.store.decrypt(self.token)
