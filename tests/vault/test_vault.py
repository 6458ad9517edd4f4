# tests/vault/test_vault.py
"""
Testes do Credential Vault.

Invariantes validadas:
- encrypt/decrypt com a mesma chave recupera o texto plano
- o segredo cifrado nunca contém o texto plano
- chave errada, adulteração ou algoritmo desconhecido → AuthError
- Vault sem chave → VaultKeyMissingError
"""

import base64
from dataclasses import replace

import pytest

from panelflow.core.exceptions import AuthError, EngineConfigurationError, VaultKeyMissingError
from panelflow.vault import CredentialVault, EncryptedSecret, MasterKey


def test_encrypt_decrypt_roundtrip(vault):
    enc = vault.encrypt("p@ss-wörd")
    assert vault.decrypt(enc) == "p@ss-wörd"


def test_ciphertext_never_contains_plaintext(vault):
    enc = vault.encrypt("plaintext-secret")
    blob = str(enc.to_dict())
    assert "plaintext-secret" not in blob
    assert "plaintext-secret".encode() not in base64.b64decode(enc.ciphertext)


def test_nonce_is_unique_per_encryption(vault):
    a = vault.encrypt("same")
    b = vault.encrypt("same")
    assert a.nonce != b.nonce
    assert a.ciphertext != b.ciphertext


def test_wrong_key_is_auth_error(vault):
    enc = vault.encrypt("secret")
    other = CredentialVault(MasterKey.from_secret("another-master-secret"))
    with pytest.raises(AuthError):
        other.decrypt(enc)


def test_tampered_ciphertext_is_auth_error(vault):
    enc = vault.encrypt("secret")
    raw = bytearray(base64.b64decode(enc.ciphertext))
    raw[0] ^= 0xFF
    tampered = replace(enc, ciphertext=base64.b64encode(bytes(raw)).decode("ascii"))
    with pytest.raises(AuthError):
        vault.decrypt(tampered)


def test_garbage_base64_is_auth_error(vault):
    with pytest.raises(AuthError):
        vault.decrypt(EncryptedSecret(ciphertext="%%%", nonce="%%%"))


def test_unknown_algorithm_is_auth_error(vault):
    enc = replace(vault.encrypt("secret"), algorithm="rot13")
    with pytest.raises(AuthError):
        vault.decrypt(enc)


def test_missing_key_raises():
    empty = CredentialVault()
    assert not empty.has_key
    with pytest.raises(VaultKeyMissingError):
        empty.encrypt("x")


def test_set_key_once(master_key):
    v = CredentialVault()
    v.set_key(master_key)
    v.set_key(master_key)
    assert v.has_key
    with pytest.raises(EngineConfigurationError):
        v.set_key(MasterKey.generate())


def test_master_key_from_env(monkeypatch):
    monkeypatch.setenv("PANELFLOW_MASTER_KEY", "from-env")
    assert MasterKey.from_env() == MasterKey.from_secret("from-env")
    monkeypatch.delenv("PANELFLOW_MASTER_KEY")
    with pytest.raises(VaultKeyMissingError):
        MasterKey.from_env()


def test_master_key_repr_hides_material(master_key):
    assert repr(master_key.material) not in repr(master_key)


def test_decrypted_context(vault):
    enc = vault.encrypt("ctx")
    with vault.decrypted(enc) as plain:
        assert plain == "ctx"


def test_encrypted_secret_dict_roundtrip(vault):
    enc = vault.encrypt("x")
    assert EncryptedSecret.from_dict(enc.to_dict()) == enc


def test_error_inside_decrypted_scope_propagates_unchanged(vault):
    enc = vault.encrypt("s3cret")
    with pytest.raises(AuthError) as exc:
        with vault.decrypted(enc):
            raise AuthError("login refused", details={"connector_id": "local"})
    assert exc.value.message == "login refused"
    assert exc.value.details == {"connector_id": "local"}
