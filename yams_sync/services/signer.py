"""RS512 request signing for the YAMS management API."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

import jwt
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.serialization import load_pem_private_key

from yams_sync.exceptions import SignerError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

ALGORITHM = "RS512"


def load_rsa_private_key(path: Path) -> RSAPrivateKey:
    """Load an unencrypted PKCS#8 PEM RSA private key. Raises SignerError."""
    try:
        pem = path.read_bytes()
    except OSError as exc:
        raise SignerError(f"Unable to read private key {path}: {exc}") from exc
    try:
        key = load_pem_private_key(pem, password=None)
    except (ValueError, TypeError) as exc:
        raise SignerError(f"Malformed private key {path}: {exc}") from exc
    if not isinstance(key, RSAPrivateKey):
        raise SignerError(f"Private key {path} is not an RSA key")
    return key


class JWTSigner:
    """Issues a signed JWT for each request sent to the remote bucket.

    The key is read once; a missing or malformed key fails construction.
    """

    def __init__(self, private_key_path: Path) -> None:
        self._key = load_rsa_private_key(private_key_path)
        logger.debug("Loaded RS512 signing key from %s", private_key_path)

    @staticmethod
    def claims_for(
        method: str, path: str, metadata: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Build the claim set for one request.

        ``rqs`` is the request descriptor ``<METHOD>\\<path>`` the server checks
        the signature against.
        """
        claims: dict[str, Any] = {
            "iat": int(time.time()),
            "rqs": f"{method.upper()}\\{path}",
        }
        if metadata is not None:
            claims["metadata"] = metadata
        return claims

    def token(self, claims: dict[str, Any]) -> str:
        """Sign ``claims`` and return the compact JWT."""
        try:
            return jwt.encode(claims, self._key, algorithm=ALGORITHM)
        except (ValueError, TypeError) as exc:
            raise SignerError(f"Unable to sign request: {exc}") from exc
