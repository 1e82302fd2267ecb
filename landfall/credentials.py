"""Recovery of the generated Windows administrator password.

EC2 encrypts the password of a fresh Windows instance with the public half
of the launch key pair. Generation happens out of band and typically takes
tens of minutes, so the blob is polled with a long interval until it shows
up, then decrypted exactly once with the private key.
"""

from __future__ import annotations

import base64
import binascii
import time
from collections.abc import Callable
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from loguru import logger

from landfall.cloud import ControlPlane
from landfall.constants import CREDENTIAL_POLL_INTERVAL
from landfall.exceptions import CredentialError
from landfall.poll import Sleep, poll
from landfall.progress import Progress
from landfall.types import READY, NotReady, ProbeOutcome

log = logger.bind(component="credentials")

type Decrypt = Callable[[str, bytes], str]


def decrypt_password(encoded: str, key_material: bytes) -> str:
    """Decrypt a base64 password blob with a PEM RSA private key.

    Raises:
        CredentialError: If the key or the ciphertext is malformed.
    """
    try:
        private_key = serialization.load_pem_private_key(key_material, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CredentialError(f"Cannot load private key: {e}") from e
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise CredentialError("Password decryption requires an RSA private key")

    try:
        # EC2 wraps the blob across lines.
        ciphertext = base64.b64decode("".join(encoded.split()), validate=True)
    except binascii.Error as e:
        raise CredentialError(f"Password data is not valid base64: {e}") from e

    try:
        plaintext = private_key.decrypt(ciphertext, padding.PKCS1v15())
    except ValueError as e:
        raise CredentialError("Password data could not be decrypted with this key") from e
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CredentialError("Password data could not be decrypted with this key") from e


class CredentialRetriever:
    """Polls for the encrypted password blob, then decrypts it once."""

    def __init__(
        self,
        plane: ControlPlane,
        *,
        interval: float = CREDENTIAL_POLL_INTERVAL,
        sleep: Sleep = time.sleep,
        progress: Progress | None = None,
        decrypt: Decrypt = decrypt_password,
    ) -> None:
        self._plane = plane
        self._interval = interval
        self._sleep = sleep
        self._progress = progress
        self._decrypt = decrypt

    def retrieve(
        self,
        instance_id: str,
        identity_file: str | None,
        *,
        max_attempts: int | None = None,
    ) -> str:
        """Return the plaintext administrator password for ``instance_id``.

        The identity file is checked before polling starts, so a missing key
        fails fast instead of after half an hour of waiting.

        Raises:
            CredentialError: Missing identity file, or decryption failure.
        """
        key_path = self._key_path(identity_file)

        if self._progress is not None:
            self._progress.begin("Waiting for Windows Admin password to be available")

        blob: list[str] = []

        def _attempt() -> ProbeOutcome:
            data = self._plane.get_password_data(instance_id)
            if not data:
                return NotReady("password data not generated yet")
            blob.append(data)
            return READY

        poll(
            _attempt,
            interval=self._interval,
            sleep=self._sleep,
            progress=self._progress,
            max_attempts=max_attempts,
            description=f"password data for {instance_id}",
        )

        log.info("Decrypting administrator password for {id}", id=instance_id)
        try:
            key_material = key_path.read_bytes()
        except OSError as e:
            raise CredentialError(f"Cannot read identity file {key_path}: {e.strerror or e}") from e
        return self._decrypt(blob[-1], key_material)

    @staticmethod
    def _key_path(identity_file: str | None) -> Path:
        if not identity_file:
            raise CredentialError(
                "Cannot find SSH Identity file, required to fetch dynamically generated password"
            )
        path = Path(identity_file).expanduser()
        if not path.is_file():
            raise CredentialError(f"Identity file {path} does not exist")
        return path
