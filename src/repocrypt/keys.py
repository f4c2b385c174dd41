"""Local storage of the repository's symmetric key."""

import base64
import binascii
import os
from typing import Callable, Optional

import yaml

from repocrypt import CorruptedKeyBlob, KeyUnreadable, output
from repocrypt.config import Config
from repocrypt.utils import atomic_write, create_exclusive, read_file

KEY_LENGTH = 32

# Older exports wrapped a record into the `key` field of another record.
MAX_UNWRAP_DEPTH = 5


def random_bytes(n: int) -> bytes:
    if n < 0:
        raise ValueError("length must not be negative, got {}".format(n))
    return os.urandom(n)


def random_string(n: int) -> str:
    """Return `n` random bytes as standard, padded base64."""
    return base64.b64encode(random_bytes(n)).decode("ascii")


def _decode_key(value, path):
    try:
        key = base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyUnreadable.from_context(path, "invalid base64: {}".format(e))
    if len(key) != KEY_LENGTH:
        raise KeyUnreadable.from_context(
            path,
            "expected {} key bytes, found {}".format(KEY_LENGTH, len(key)),
        )
    return key


def _load_mapping(data, path):
    try:
        document = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise KeyUnreadable.from_context(path, "invalid YAML: {}".format(e))
    if not isinstance(document, dict) or "key" not in document:
        raise KeyUnreadable.from_context(path, "no `key` field found")
    return document


def _nested(value):
    """Return the record wrapped in `value` or None if it is a plain key."""
    if isinstance(value, str):
        try:
            value = yaml.safe_load(value)
        except yaml.YAMLError:
            return None
    if isinstance(value, dict) and "key" in value:
        return value
    return None


class KeyRecord(object):
    """The portable form of the key: a YAML mapping with a `key` field."""

    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise ValueError(
                "key must be {} bytes, got {}".format(KEY_LENGTH, len(key))
            )
        self.key = key

    def __eq__(self, other):
        return isinstance(other, KeyRecord) and self.key == other.key

    def __repr__(self):
        return "<KeyRecord>"

    @classmethod
    def generate(cls) -> "KeyRecord":
        return cls(random_bytes(KEY_LENGTH))

    @classmethod
    def parse(cls, data, path=None) -> "KeyRecord":
        if isinstance(data, bytes):
            try:
                data = data.decode("utf-8")
            except UnicodeDecodeError:
                raise KeyUnreadable.from_context(path, "not UTF-8 text")
        document = _load_mapping(data, path)
        for depth in range(MAX_UNWRAP_DEPTH + 1):
            value = document["key"]
            nested = _nested(value)
            if nested is None:
                if not isinstance(value, str):
                    raise KeyUnreadable.from_context(
                        path, "`key` field is not a string"
                    )
                return cls(_decode_key(value, path))
            if depth == MAX_UNWRAP_DEPTH:
                break
            output.annotate(
                "Unwrapping nested key record (level {})".format(depth + 1),
                debug=True,
            )
            document = nested
        raise CorruptedKeyBlob.from_context(MAX_UNWRAP_DEPTH, path)

    @property
    def encoded(self) -> str:
        return base64.b64encode(self.key).decode("ascii")

    def marshal(self) -> bytes:
        return yaml.safe_dump(
            {"key": self.encoded}, default_flow_style=False
        ).encode("utf-8")


class KeyStore(object):
    """Reads and writes the key file selected by the configuration.

    Nothing is cached: every call goes back to the file so that separate
    filter processes always agree on the key.

    """

    def __init__(
        self,
        config: Config,
        fallback: Optional[Callable[[], Optional[KeyRecord]]] = None,
    ):
        self.config = config
        self.fallback = fallback

    @property
    def path(self) -> str:
        return self.config.key_file

    def read(self) -> Optional[KeyRecord]:
        try:
            data = read_file(self.path)
        except OSError as e:
            raise KeyUnreadable.from_context(self.path, str(e))
        if data is None:
            return None
        return KeyRecord.parse(data, self.path)

    def materialize(self) -> KeyRecord:
        record = self.read()
        if record is not None:
            return record
        if self.fallback is not None:
            record = self.fallback()
        if record is None:
            output.annotate(
                "Generating new key in {}".format(self.path), debug=True
            )
            record = KeyRecord.generate()
        if not create_exclusive(self.path, record.marshal()):
            # Somebody else created the key in the meantime; theirs wins.
            record = self.read()
            if record is None:
                raise KeyUnreadable.from_context(
                    self.path, "path exists but is not a readable file"
                )
        return record

    def flush(self, record: KeyRecord):
        atomic_write(self.path, record.marshal())

    def import_(self, data) -> KeyRecord:
        record = KeyRecord.parse(data)
        self.flush(record)
        return record

    def export(self) -> bytes:
        return self.materialize().marshal()
