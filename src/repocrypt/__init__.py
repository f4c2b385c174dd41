import enum
import os.path
from typing import List, Optional

from ._output import output

with open(os.path.dirname(__file__) + "/version.txt") as f:
    __version__ = f.read().strip()


class ErrorKind(enum.Enum):
    """Stable classification of everything repocrypt reports as an error."""

    KEY_UNREADABLE = "key-unreadable"
    CIPHER_INTEGRITY_FAILURE = "cipher-integrity-failure"
    CORRUPTED_KEY_BLOB = "corrupted-key-blob"
    CLUSTER_SECRET_MISSING = "cluster-secret-missing"
    FILTER_CONFIG_ERROR = "filter-config-error"
    RECIPIENT_RESOLUTION_ERROR = "recipient-resolution-error"
    API_ERROR = "api-error"
    COMMAND_FAILED = "command-failed"
    IO_ERROR = "io-error"
    CONFIG_ERROR = "config-error"
    USAGE_ERROR = "usage-error"


class ReportingException(Exception):
    """Exceptions that support user-readable reporting."""

    kind: ErrorKind

    def __str__(self):
        raise NotImplementedError()

    def report(self):
        raise NotImplementedError()


class KeyUnreadable(ReportingException):
    """The local key file is missing or does not hold a valid key."""

    kind = ErrorKind.KEY_UNREADABLE

    path: Optional[str]
    reason: str

    @classmethod
    def from_context(cls, path, reason):
        self = cls()
        self.path = str(path) if path is not None else None
        self.reason = reason
        return self

    def __str__(self):
        if self.path is None:
            return f"Unreadable key: {self.reason}"
        return f"Unreadable key in {self.path}: {self.reason}"

    def report(self):
        output.error("Could not read encryption key")
        if self.path is not None:
            output.tabular("file", self.path, red=True)
        output.tabular("reason", self.reason)


class CipherIntegrityFailure(ReportingException):
    """Ciphertext was tampered with or encrypted under another key."""

    kind = ErrorKind.CIPHER_INTEGRITY_FAILURE

    reason: str

    @classmethod
    def from_context(cls, reason):
        self = cls()
        self.reason = reason
        return self

    def __str__(self):
        return f"Integrity check failed: {self.reason}"

    def report(self):
        output.error("Could not decrypt data")
        output.tabular("reason", self.reason, red=True)
        output.tabular(
            "hint", "the data was modified or encrypted with another key"
        )


class CorruptedKeyBlob(KeyUnreadable):
    """A key record stayed nested after the maximum unwrap depth."""

    kind = ErrorKind.CORRUPTED_KEY_BLOB

    depth: int

    @classmethod
    def from_context(cls, depth, path=None):
        self = super().from_context(
            path, f"still nested after unwrapping {depth} levels"
        )
        self.depth = depth
        return self

    def report(self):
        output.error("Corrupted key record")
        output.tabular("depth", str(self.depth), red=True)
        output.tabular("reason", self.reason)


class ClusterSecretMissing(ReportingException):
    """The cluster does not hold the expected secret or field."""

    kind = ErrorKind.CLUSTER_SECRET_MISSING

    namespace: str
    name: str
    field: Optional[str]

    @classmethod
    def from_context(cls, namespace, name, field=None):
        self = cls()
        self.namespace = namespace
        self.name = name
        self.field = field
        return self

    def __str__(self):
        if self.field is None:
            return f"Could not find secret {self.namespace}/{self.name}"
        return (
            f"Could not find `{self.field}` in secret "
            f"{self.namespace}/{self.name}"
        )

    def report(self):
        output.error(str(self))


class ClusterSecretMalformed(ClusterSecretMissing):
    """kubectl answered, but not with a readable secret."""

    reason: str

    @classmethod
    def from_context(cls, namespace, name, reason):
        self = super().from_context(namespace, name)
        self.reason = reason
        return self

    def __str__(self):
        return (
            f"Could not read secret {self.namespace}/{self.name}: "
            f"{self.reason}"
        )


class FilterConfigError(ReportingException):
    """Writing the git filter configuration failed."""

    kind = ErrorKind.FILTER_CONFIG_ERROR

    command: str
    exitcode: str
    output: str

    @classmethod
    def from_context(cls, command, exitcode, output):
        self = cls()
        self.command = command
        self.exitcode = str(exitcode)
        self.output = output
        return self

    def __str__(self):
        return (
            f"Exitcode {self.exitcode} while calling: "
            f"{self.command}\n{self.output}"
        )

    def report(self):
        output.error("Error while configuring git filters")
        output.tabular("command", self.command, red=True)
        output.tabular("exit code", self.exitcode)
        output.tabular("message", self.output, separator=":\n")


class RecipientResolutionError(ReportingException):
    """Some identities have no registered public key."""

    kind = ErrorKind.RECIPIENT_RESOLUTION_ERROR

    emails: List[str]

    @classmethod
    def from_context(cls, emails):
        self = cls()
        self.emails = list(emails)
        return self

    def __str__(self):
        return "No public key registered for: " + ", ".join(self.emails)

    def report(self):
        output.error("Could not resolve all recipients")
        for email in self.emails:
            output.tabular("missing", email, red=True)
        output.annotate(
            "Ask them to run `repocrypt setup-keys --name <name>` first. "
            "Nothing was shared."
        )


class APIError(ReportingException):
    """The identity registry answered with an error."""

    kind = ErrorKind.API_ERROR

    endpoint: str
    message: str

    @classmethod
    def from_context(cls, endpoint, message):
        self = cls()
        self.endpoint = endpoint
        self.message = message
        return self

    def __str__(self):
        return f"API error from {self.endpoint}: {self.message}"

    def report(self):
        output.error("Error while calling the API")
        output.tabular("endpoint", self.endpoint, red=True)
        output.tabular("message", self.message, separator=":\n")


class ConfigurationError(ReportingException):
    """The user's configuration file cannot be parsed."""

    kind = ErrorKind.CONFIG_ERROR

    path: str
    reason: str

    @classmethod
    def from_context(cls, path, reason):
        self = cls()
        self.path = str(path)
        self.reason = reason
        return self

    def __str__(self):
        return f"Invalid configuration in {self.path}: {self.reason}"

    def report(self):
        output.error("Invalid configuration file")
        output.tabular("file", self.path, red=True)
        output.tabular("reason", self.reason, separator=":\n")


class IOFailure(ReportingException):
    """Reading or writing a file failed."""

    kind = ErrorKind.IO_ERROR

    filename: Optional[str]
    reason: str

    @classmethod
    def from_context(cls, error: OSError):
        self = cls()
        self.filename = (
            None if error.filename is None else str(error.filename)
        )
        self.reason = error.strerror or str(error)
        return self

    def __str__(self):
        if self.filename is None:
            return f"I/O error: {self.reason}"
        return f"I/O error: {self.reason}: {self.filename}"

    def report(self):
        output.error(str(self))


class NotAtRepositoryRoot(ReportingException):
    """A repository-wide command was started outside the repository root."""

    kind = ErrorKind.USAGE_ERROR

    cwd: str
    root: str

    @classmethod
    def from_context(cls, cwd, root):
        self = cls()
        self.cwd = cwd
        self.root = root
        return self

    def __str__(self):
        return "You must run this command at the root of your git repository"

    def report(self):
        output.error(str(self))
        output.tabular("cwd", self.cwd)
        output.tabular("root", self.root)
