import mock
import pytest

from repocrypt import CipherIntegrityFailure, ErrorKind
from repocrypt.cipher import MAGIC_PREFIX, NONCE_SIZE, Cipher, decrypt, encrypt
from repocrypt.keys import KeyRecord


@pytest.mark.parametrize(
    "plaintext", [b"", b"a", b"foo: bar\n", bytes(range(256)) * 100]
)
def test_cipher_roundtrip(plaintext):
    cipher = Cipher(KeyRecord.generate().key)
    assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext


def test_cipher_uses_fresh_nonce_per_call():
    cipher = Cipher(KeyRecord.generate().key)
    a = cipher.encrypt(b"same")
    b = cipher.encrypt(b"same")
    assert a != b
    assert a[:NONCE_SIZE] != b[:NONCE_SIZE]


def test_cipher_does_not_add_prefix():
    cipher = Cipher(KeyRecord.generate().key)
    assert not cipher.encrypt(b"data").startswith(MAGIC_PREFIX)


def test_decrypt_with_other_key_fails():
    ciphertext = Cipher(KeyRecord.generate().key).encrypt(b"secret")
    with pytest.raises(CipherIntegrityFailure) as e:
        Cipher(KeyRecord.generate().key).decrypt(ciphertext)
    assert e.value.kind == ErrorKind.CIPHER_INTEGRITY_FAILURE


def test_decrypt_tampered_ciphertext_fails():
    cipher = Cipher(KeyRecord.generate().key)
    ciphertext = bytearray(cipher.encrypt(b"secret"))
    ciphertext[-1] ^= 0x01
    with pytest.raises(CipherIntegrityFailure):
        cipher.decrypt(bytes(ciphertext))


def test_decrypt_truncated_ciphertext_fails():
    cipher = Cipher(KeyRecord.generate().key)
    with pytest.raises(CipherIntegrityFailure):
        cipher.decrypt(b"short")


@pytest.mark.parametrize("plaintext", [b"", b"values:\n  password: x\n"])
def test_encrypt_decrypt_roundtrip(key_store, plaintext):
    encrypted = encrypt(plaintext, key_store)
    assert encrypted.startswith(MAGIC_PREFIX)
    assert decrypt(encrypted, key_store) == plaintext


def test_encrypt_is_idempotent(key_store):
    encrypted = encrypt(b"secret", key_store)
    assert encrypt(encrypted, key_store) == encrypted


def test_encrypt_passes_through_without_touching_key():
    key_store = mock.Mock()
    data = MAGIC_PREFIX + b"whatever"
    assert encrypt(data, key_store) == data
    assert not key_store.materialize.called


@pytest.mark.parametrize(
    "data", [b"", b"plain text", b"CHARTMART", MAGIC_PREFIX[:-1]]
)
def test_decrypt_passes_through_unencrypted_data(data):
    key_store = mock.Mock()
    assert decrypt(data, key_store) == data
    assert not key_store.materialize.called


def test_decrypt_with_other_key_store_fails(key_store):
    encrypted = encrypt(b"secret", key_store)
    other = mock.Mock()
    other.materialize.return_value = KeyRecord.generate()
    with pytest.raises(CipherIntegrityFailure):
        decrypt(encrypted, other)
