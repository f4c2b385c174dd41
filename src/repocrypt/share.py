"""Share the repository key with other users.

Every user owns an age identity. Its public half is registered with the
API. Sharing encrypts the repository key to the public keys of all given
users and writes the result to `.repocrypt/key.age`. Once that is committed,
each of them can recover the key from a clone with their own identity.

"""

import os.path
from typing import Dict, List, Optional

import pyrage
from configupdater import ConfigUpdater

from repocrypt import KeyUnreadable, RecipientResolutionError, output
from repocrypt.config import Config
from repocrypt.keys import KeyRecord, KeyStore
from repocrypt.utils import atomic_write_all, create_exclusive, read_file

ENVELOPE_DIR = ".repocrypt"
ENVELOPE_FILE = "key.age"
RECIPIENTS_FILE = "recipients.cfg"
RECIPIENTS_SECTION = "recipients"
OWNER_LABEL = "(owner)"


class IdentityStore(object):
    """The local user's age identity."""

    def __init__(self, config: Config):
        self.config = config

    @property
    def path(self) -> str:
        return self.config.identity_file

    def load(self) -> Optional[pyrage.x25519.Identity]:
        data = read_file(self.path)
        if data is None:
            return None
        try:
            return pyrage.x25519.Identity.from_str(data.decode("ascii").strip())
        except (pyrage.IdentityError, UnicodeDecodeError) as e:
            raise KeyUnreadable.from_context(
                self.path, "invalid age identity: {}".format(e)
            )

    def generate(self) -> pyrage.x25519.Identity:
        identity = pyrage.x25519.Identity.generate()
        content = "{}\n".format(identity).encode("ascii")
        if not create_exclusive(self.path, content):
            return self.load()
        return identity


def setup_identity(api, identities: IdentityStore, name: str) -> str:
    """Register the local identity's public key under `name`.

    An existing local identity is reused so that envelopes already sealed
    to it stay readable. Returns the public key.

    """
    identity = identities.load()
    if identity is None:
        output.annotate(
            "Generating new identity in {}".format(identities.path),
            debug=True,
        )
        identity = identities.generate()
    public = str(identity.to_public())
    api.create_key(name, public)
    return public


class Envelope(object):
    """The key, sealed to a set of recipients, inside a repository."""

    def __init__(self, root: str):
        self.root = root

    @property
    def path(self) -> str:
        return os.path.join(self.root, ENVELOPE_DIR, ENVELOPE_FILE)

    @property
    def recipients_path(self) -> str:
        return os.path.join(self.root, ENVELOPE_DIR, RECIPIENTS_FILE)

    @property
    def exists(self) -> bool:
        return os.path.exists(self.path)

    def recipients(self) -> Dict[str, str]:
        """Return a mapping of public key to label."""
        if not os.path.exists(self.recipients_path):
            return {}
        config = ConfigUpdater().read(self.recipients_path)
        if not config.has_section(RECIPIENTS_SECTION):
            return {}
        section = config[RECIPIENTS_SECTION]
        return {option: section[option].value for option in section}

    def seal(self, record: KeyRecord, recipients: Dict[str, str]):
        sealed = pyrage.encrypt(
            record.marshal(),
            [pyrage.x25519.Recipient.from_str(key) for key in recipients],
        )
        config = ConfigUpdater()
        config.read_string("[{}]\n".format(RECIPIENTS_SECTION))
        for key, label in sorted(recipients.items(), key=lambda x: x[1]):
            config.set(RECIPIENTS_SECTION, key, label)
        atomic_write_all(
            {
                self.recipients_path: (str(config).encode("utf-8"), 0o644),
                self.path: (sealed, 0o644),
            }
        )

    def open(self, identity: pyrage.x25519.Identity) -> KeyRecord:
        with open(self.path, "rb") as f:
            sealed = f.read()
        try:
            data = pyrage.decrypt(sealed, [identity])
        except pyrage.DecryptError as e:
            raise KeyUnreadable.from_context(
                self.path,
                "your identity is not a recipient of this repository's key "
                "({})".format(e),
            )
        return KeyRecord.parse(data, self.path)


def envelope_fallback(envelope: Envelope, identities: IdentityStore):
    """Open the repository envelope when there is no local key yet."""

    def fallback() -> Optional[KeyRecord]:
        if not envelope.exists:
            return None
        identity = identities.load()
        if identity is None:
            raise KeyUnreadable.from_context(
                envelope.path,
                "the key of this repository is shared, but there is no "
                "local identity. Run `repocrypt setup-keys` and ask a "
                "recipient to share the repository with you.",
            )
        output.annotate(
            "Recovering key from {}".format(envelope.path), debug=True
        )
        return envelope.open(identity)

    return fallback


def resolve(api, emails: List[str]) -> Dict[str, str]:
    """Map public keys of all `emails` to their email.

    Raises RecipientResolutionError naming every email without a usable key.

    """
    resolved: Dict[str, str] = {}
    seen = set()
    for key in api.list_keys(emails):
        try:
            pyrage.x25519.Recipient.from_str(key.content)
        except pyrage.RecipientError:
            output.warn(
                "Ignoring invalid public key registered for {}".format(
                    key.email
                )
            )
            continue
        resolved[key.content] = key.email
        seen.add(key.email.lower())
    missing = [email for email in emails if email.lower() not in seen]
    if missing:
        raise RecipientResolutionError.from_context(missing)
    return resolved


def share(
    api,
    key_store: KeyStore,
    envelope: Envelope,
    emails: List[str],
    identity: Optional[pyrage.x25519.Identity] = None,
) -> Dict[str, str]:
    """Seal the current key to `emails` (and the local identity).

    Nothing is written unless every email resolves to a public key.

    """
    emails = list(dict.fromkeys(emails))
    recipients = resolve(api, emails)
    if identity is not None:
        recipients.setdefault(str(identity.to_public()), OWNER_LABEL)
    envelope.seal(key_store.materialize(), recipients)
    return recipients
