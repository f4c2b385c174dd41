import argparse
import os
import os.path
import sys
import textwrap
from typing import Optional

import importlib_resources

import repocrypt
import repocrypt.cipher
import repocrypt.recover
import repocrypt.share
import repocrypt.ssh
from repocrypt import IOFailure, NotAtRepositoryRoot, ReportingException
from repocrypt._output import TerminalBackend, output
from repocrypt.api import Client
from repocrypt.config import Config
from repocrypt.filters import FilterPolicy, Git
from repocrypt.keys import KeyStore, random_string
from repocrypt.utils import CmdExecutionError


def _write(data: bytes):
    sys.stdout.buffer.write(data)
    sys.stdout.flush()


def _key_store(config: Config) -> KeyStore:
    identities = repocrypt.share.IdentityStore(config)

    def fallback():
        try:
            root = Git().root()
        except (CmdExecutionError, FileNotFoundError):
            # not inside a repository
            return None
        envelope = repocrypt.share.Envelope(root)
        return repocrypt.share.envelope_fallback(envelope, identities)()

    return KeyStore(config, fallback)


def _non_negative(value):
    value = int(value)
    if value < 0:
        raise argparse.ArgumentTypeError("must not be negative")
    return value


def _rooted() -> Git:
    git = Git()
    root = git.root()
    cwd = os.getcwd()
    if os.path.realpath(root) != os.path.realpath(cwd):
        raise NotAtRepositoryRoot.from_context(cwd, root)
    return git


def encrypt(config):
    data = sys.stdin.buffer.read()
    _write(repocrypt.cipher.encrypt(data, _key_store(config)))


def decrypt(config, file=None):
    if file:
        with open(os.path.abspath(file), "rb") as f:
            data = f.read()
    else:
        data = sys.stdin.buffer.read()
    _write(repocrypt.cipher.decrypt(data, _key_store(config)))


def init(config):
    git = _rooted()
    FilterPolicy(git, key_store=_key_store(config)).install()
    output.success("Git encryption filters installed.")


def check(config):
    git = _rooted()
    if FilterPolicy(git, key_store=_key_store(config)).check():
        output.success("Git encryption filters were outdated and reinstalled.")


def unlock(config):
    git = _rooted()
    FilterPolicy(git).unlock()


def import_key(config):
    KeyStore(config).import_(sys.stdin.buffer.read())
    output.success("Key imported.")


def export_key(config):
    _write(_key_store(config).export())


def rand_string(config, count, length=None):
    if length is not None:
        count = length
    print(random_string(count))


def recover(config, context=None):
    cluster = repocrypt.recover.Kubectl(context)
    repocrypt.recover.recover(cluster, KeyStore(config))
    output.success("Key successfully synced locally!")
    output.annotate(
        "You might need to run `repocrypt init` and `repocrypt setup-keys` "
        "to decrypt any repos with your new key."
    )


def share(config, email):
    git = Git()
    identity = repocrypt.share.IdentityStore(config).load()
    if identity is None:
        output.warn(
            "No local identity found, you will not be a recipient yourself. "
            "Run `repocrypt setup-keys` to create one."
        )
    recipients = repocrypt.share.share(
        Client.from_config(config),
        _key_store(config),
        repocrypt.share.Envelope(git.root()),
        email,
        identity,
    )
    output.success("Repository key shared with:")
    for label in sorted(recipients.values()):
        output.annotate(label)
    output.line("Commit .repocrypt/ to make the key available to them.")


def setup_keys(config, name):
    repocrypt.share.setup_identity(
        Client.from_config(config),
        repocrypt.share.IdentityStore(config),
        name,
    )
    output.success("Public key uploaded successfully.")


def ssh_keygen(config, name, directory):
    path = repocrypt.ssh.ssh_keygen(os.path.expanduser(directory), name)
    output.success("Wrote {} and {}.pub".format(path, path))


def main(args: Optional[list] = None) -> None:
    version = (
        importlib_resources.files("repocrypt")
        .joinpath("version.txt")
        .read_text()
        .strip()
    )
    parser = argparse.ArgumentParser(
        description=(
            "repocrypt v{}: transparent encryption of secrets in git "
            "repositories"
        ).format(version),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.set_defaults(func=parser.print_usage)

    parser.add_argument(
        "-d", "--debug", action="store_true", help="Enable debug mode."
    )
    parser.add_argument(
        "--encryption-key-file",
        metavar="FILE",
        default=None,
        help="Use FILE as encryption key "
        "(default: $REPOCRYPT_ENCRYPTION_KEY_FILE or ~/.repocrypt/key).",
    )

    subparsers = parser.add_subparsers()

    p = subparsers.add_parser(
        "encrypt", help="Encrypt stdin and write it to stdout."
    )
    p.set_defaults(func=encrypt)

    p = subparsers.add_parser(
        "decrypt", help="Decrypt a file (or stdin) and write it to stdout."
    )
    p.add_argument("file", nargs="?", help="File to decrypt.")
    p.set_defaults(func=decrypt)

    p = subparsers.add_parser("init", help="Install the git filters.")
    p.set_defaults(func=init)

    p = subparsers.add_parser(
        "check",
        help=textwrap.dedent(
            """
            Reinstall the git filters if .gitattributes or .gitignore are
            missing or differ from what this version of repocrypt expects.
        """
        ),
    )
    p.set_defaults(func=check)

    p = subparsers.add_parser(
        "unlock", help="Decrypt all affected files in the repository."
    )
    p.set_defaults(func=unlock)

    p = subparsers.add_parser(
        "import", help="Import a key (as written by `export`) from stdin."
    )
    p.set_defaults(func=import_key)

    p = subparsers.add_parser(
        "export", help="Write the current key to stdout."
    )
    p.set_defaults(func=export_key)

    p = subparsers.add_parser(
        "random", help="Print a random base64 string."
    )
    p.add_argument(
        "--len",
        dest="count",
        type=_non_negative,
        default=32,
        help="Number of random bytes to encode.",
    )
    p.add_argument(
        "length",
        type=_non_negative,
        nargs="?",
        help="Number of random bytes to encode (overrides --len).",
    )
    p.set_defaults(func=rand_string)

    p = subparsers.add_parser(
        "recover",
        help="Recover the encryption key from a running kubernetes cluster.",
    )
    p.add_argument(
        "--context", default=None, help="kubectl context to use."
    )
    p.set_defaults(func=recover)

    p = subparsers.add_parser(
        "share",
        help="Allow a list of users to decrypt this repository.",
    )
    p.add_argument(
        "--email",
        action="append",
        required=True,
        help="An email to share with (multiple allowed).",
    )
    p.set_defaults(func=share)

    p = subparsers.add_parser(
        "setup-keys",
        help="Create an age identity and upload its public key.",
    )
    p.add_argument("--name", required=True, help="A name for the key.")
    p.set_defaults(func=setup_keys)

    p = subparsers.add_parser(
        "ssh-keygen",
        help="Generate an ed25519 keypair without passphrase for git ssh.",
    )
    p.add_argument(
        "--name",
        default=repocrypt.ssh.DEFAULT_NAME,
        help="File name of the keypair.",
    )
    p.add_argument(
        "--directory", default="~/.ssh", help="Where to put the keypair."
    )
    p.set_defaults(func=ssh_keygen)

    args = parser.parse_args(args)

    # Consume global arguments
    output.enable_debug = args.debug

    # Pass over to function
    if args.func.__name__ == "print_usage":
        args.func()
        sys.exit(1)

    output.backend = TerminalBackend()

    func_args = dict(args._get_kwargs())
    del func_args["func"]
    del func_args["debug"]
    key_file = func_args.pop("encryption_key_file")
    try:
        config = Config.load(key_file=key_file)
        args.func(config, **func_args)
    except ReportingException as e:
        e.report()
        sys.exit(1)
    except OSError as e:
        IOFailure.from_context(e).report()
        sys.exit(1)
    except Exception:
        output.error("Unexpected exception", exc_info=sys.exc_info())
        sys.exit(1)
