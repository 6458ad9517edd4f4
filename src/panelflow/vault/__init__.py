"""Credential Vault do panelflow."""

from .vault import ALGORITHM, MASTER_KEY_ENV, CredentialVault, EncryptedSecret, MasterKey

__all__ = ["ALGORITHM", "MASTER_KEY_ENV", "CredentialVault", "EncryptedSecret", "MasterKey"]
