# src/panelflow/vault/vault.py
"""
Credential Vault — cifragem de segredos de conectores.

Este módulo define o cofre de credenciais do panelflow: o único componente
que conhece a chave mestra do processo e o único capaz de transformar um
`EncryptedSecret` em texto plano.

Responsabilidades do módulo:
    - Cifrar segredos (AES-256-GCM) produzindo `EncryptedSecret`
    - Decifrar segredos apenas no escopo de quem precisa deles
    - Distinguir falha de autenticação do segredo (AuthError) de falhas
      de conexão a jusante
    - Manter a chave mestra como estado explícito, injetado no startup

Decisões arquiteturais:
    - A chave é derivada de um segredo mestre fora de banda (SHA-256)
    - A chave é injetada no Vault (nunca buscada implicitamente em global),
      o que permite testes com chave falsa
    - Cada decifração cria seu próprio AESGCM; o Vault é seguro para
      chamadas concorrentes
    - O nonce (96 bits) é aleatório por cifragem e viaja junto do segredo

Invariantes:
    - `EncryptedSecret` nunca contém texto plano
    - O Vault nunca escreve texto plano em armazenamento durável
    - A chave mestra nunca faz parte de Project ou Panel persistidos

Limites explícitos:
    - Não abre conexões
    - Não persiste segredos (isso é do storage de projeto)
    - Não faz rotação de chave
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from panelflow.core.exceptions import AuthError, EngineConfigurationError, VaultKeyMissingError


ALGORITHM = "aes-256-gcm"
MASTER_KEY_ENV = "PANELFLOW_MASTER_KEY"
_NONCE_BYTES = 12
_ASSOCIATED_DATA = b"panelflow:connector-secret:v1"


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


@dataclass(frozen=True)
class EncryptedSecret:
    """Segredo cifrado: `{ciphertext, algorithm, nonce}` em base64."""

    ciphertext: str
    nonce: str
    algorithm: str = ALGORITHM

    def to_dict(self) -> Dict[str, str]:
        return {"ciphertext": self.ciphertext, "algorithm": self.algorithm, "nonce": self.nonce}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EncryptedSecret":
        return cls(
            ciphertext=str(data.get("ciphertext") or ""),
            nonce=str(data.get("nonce") or ""),
            algorithm=str(data.get("algorithm") or ALGORITHM),
        )


@dataclass(frozen=True)
class MasterKey:
    """Chave mestra de 256 bits do processo. Nunca aparece em repr."""

    material: bytes = field(repr=False)

    def __post_init__(self) -> None:
        if len(self.material) != 32:
            raise EngineConfigurationError("Master key must be 32 bytes (AES-256)")

    @classmethod
    def from_secret(cls, secret: str) -> "MasterKey":
        if not secret:
            raise VaultKeyMissingError("Master secret is empty")
        return cls(hashlib.sha256(secret.encode("utf-8")).digest())

    @classmethod
    def from_env(cls, var: str = MASTER_KEY_ENV) -> "MasterKey":
        secret = os.environ.get(var)
        if not secret:
            raise VaultKeyMissingError(
                f"Master secret not set ({var})",
                details={"env_var": var},
                hint=f"Defina {var} antes de iniciar o processo.",
            )
        return cls.from_secret(secret)

    @classmethod
    def generate(cls) -> "MasterKey":
        return cls(AESGCM.generate_key(bit_length=256))


class CredentialVault:
    """Cofre de credenciais com chave mestra única por processo."""

    def __init__(self, key: Optional[MasterKey] = None):
        self._key: Optional[MasterKey] = key
        self._lock = threading.Lock()

    @property
    def has_key(self) -> bool:
        return self._key is not None

    def set_key(self, key: MasterKey) -> None:
        """Define a chave uma única vez; redefinir com outra chave é erro."""
        with self._lock:
            if self._key is not None and self._key != key:
                raise EngineConfigurationError("Vault master key is already set")
            self._key = key

    def _require_key(self) -> MasterKey:
        key = self._key
        if key is None:
            raise VaultKeyMissingError(
                "Vault has no master key; cannot handle connector secrets",
                hint=f"Injete MasterKey no startup (ex.: MasterKey.from_env('{MASTER_KEY_ENV}')).",
            )
        return key

    def encrypt(self, plaintext: str) -> EncryptedSecret:
        key = self._require_key()
        nonce = os.urandom(_NONCE_BYTES)
        ct = AESGCM(key.material).encrypt(nonce, plaintext.encode("utf-8"), _ASSOCIATED_DATA)
        return EncryptedSecret(ciphertext=_b64(ct), nonce=_b64(nonce))

    def decrypt(self, secret: EncryptedSecret) -> str:
        """Decifra e devolve o texto plano.

        O chamador é responsável por não reter o valor além do uso imediato;
        prefira `decrypted()` quando o uso cabe em um bloco `with`.

        Raises:
            AuthError: chave errada, segredo corrompido, adulterado ou algoritmo desconhecido.
            VaultKeyMissingError: Vault sem chave mestra.
        """
        key = self._require_key()
        if secret.algorithm != ALGORITHM:
            raise AuthError(
                f"Unsupported secret algorithm: {secret.algorithm}",
                details={"algorithm": secret.algorithm},
            )
        try:
            nonce = _unb64(secret.nonce)
            ct = _unb64(secret.ciphertext)
            raw = AESGCM(key.material).decrypt(nonce, ct, _ASSOCIATED_DATA)
        except (InvalidTag, binascii.Error, ValueError) as e:
            raise AuthError(
                "Connector secret could not be authenticated",
                details={"reason": e.__class__.__name__},
                hint="Chave mestra diferente da usada na cifragem ou segredo corrompido.",
            ) from None
        return raw.decode("utf-8")

    @contextmanager
    def decrypted(self, secret: EncryptedSecret) -> Iterator[str]:
        """Escopo de uso do texto plano."""
        plaintext = self.decrypt(secret)
        try:
            yield plaintext
        finally:
            del plaintext
