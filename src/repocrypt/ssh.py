import os
import os.path
from typing import Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from repocrypt.utils import ensure_directory

DEFAULT_NAME = "id_repocrypt"


def generate_keypair() -> Tuple[bytes, bytes]:
    """Return an unencrypted ed25519 keypair as (private, public)."""
    key = Ed25519PrivateKey.generate()
    private = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.OpenSSH,
        serialization.NoEncryption(),
    )
    public = key.public_key().public_bytes(
        serialization.Encoding.OpenSSH,
        serialization.PublicFormat.OpenSSH,
    )
    return private, public + b"\n"


def ssh_keygen(directory: str, name: str = DEFAULT_NAME) -> str:
    """Write a new keypair to `directory`/`name` and `name`.pub.

    Refuses to touch existing files. Returns the private key's path.

    """
    path = os.path.join(directory, name)
    for candidate in (path, path + ".pub"):
        if os.path.exists(candidate):
            raise FileExistsError("File {} already exists".format(candidate))
    ensure_directory(directory)
    private, public = generate_keypair()
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(private)
    fd = os.open(path + ".pub", os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
    with os.fdopen(fd, "wb") as f:
        f.write(public)
    return path
