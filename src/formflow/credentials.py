"""Secrets provider interface.

Instance credentials are stored encrypted by the host platform. The
dispatch subsystem only ever asks for the plaintext right before a call.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class SecretsProvider(Protocol):
    def decrypt(self, ciphertext: str) -> str:
        """Return the plaintext for a stored secret.

        Raises:
            ConfigurationError: If the secret cannot be decrypted.
        """
        ...


class PlaintextSecrets:
    """Provider for deployments that store credentials unencrypted."""

    def decrypt(self, ciphertext: str) -> str:
        return ciphertext


__all__ = ["PlaintextSecrets", "SecretsProvider"]
