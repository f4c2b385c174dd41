import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from repocrypt import CipherIntegrityFailure, output

# Marks data produced by `encrypt`. Never change this: files committed with
# it must stay recognizable forever.
MAGIC_PREFIX = b"REPOCRYPT-ENCRYPTED"

NONCE_SIZE = 12


class Cipher(object):
    """AES-256-GCM over whole buffers. The nonce travels with the data."""

    def __init__(self, key: bytes):
        self.aead = AESGCM(key)

    def encrypt(self, plaintext: bytes) -> bytes:
        nonce = os.urandom(NONCE_SIZE)
        return nonce + self.aead.encrypt(nonce, plaintext, None)

    def decrypt(self, ciphertext: bytes) -> bytes:
        if len(ciphertext) < NONCE_SIZE:
            raise CipherIntegrityFailure.from_context(
                "ciphertext is shorter than its nonce"
            )
        nonce, sealed = ciphertext[:NONCE_SIZE], ciphertext[NONCE_SIZE:]
        try:
            return self.aead.decrypt(nonce, sealed, None)
        except InvalidTag:
            raise CipherIntegrityFailure.from_context(
                "authentication tag mismatch"
            )


def is_encrypted(data: bytes) -> bool:
    return data.startswith(MAGIC_PREFIX)


def encrypt(data: bytes, key_store) -> bytes:
    if is_encrypted(data):
        output.annotate("Already encrypted, passing through.", debug=True)
        return data
    cipher = Cipher(key_store.materialize().key)
    return MAGIC_PREFIX + cipher.encrypt(data)


def decrypt(data: bytes, key_store) -> bytes:
    if not is_encrypted(data):
        output.annotate("Not encrypted, passing through.", debug=True)
        return data
    cipher = Cipher(key_store.materialize().key)
    return cipher.decrypt(data[len(MAGIC_PREFIX):])
