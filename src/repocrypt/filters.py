"""Git filter integration.

Files matched by the canonical `.gitattributes` are encrypted by the
`clean` filter when staged and decrypted by the `smudge` filter on
checkout. `diff` uses the same decryption as a textconv so that `git diff`
shows plaintext.

"""

import os
import os.path
from typing import Optional

from repocrypt import FilterConfigError, output
from repocrypt.utils import CmdExecutionError, atomic_write, cmd, read_file

FILTER_NAME = "repocrypt"

GIT_ATTRIBUTES_FILE = ".gitattributes"
GIT_IGNORE_FILE = ".gitignore"

GIT_ATTRIBUTES = """\
/**/helm/**/values.yaml filter=repocrypt diff=repocrypt
/**/helm/**/values.yaml* filter=repocrypt diff=repocrypt
/**/terraform/**/main.tf filter=repocrypt diff=repocrypt
/**/terraform/**/main.tf* filter=repocrypt diff=repocrypt
/**/manifest.yaml filter=repocrypt diff=repocrypt
/**/output.yaml filter=repocrypt diff=repocrypt
/diffs/**/* filter=repocrypt diff=repocrypt
context.yaml filter=repocrypt diff=repocrypt
workspace.yaml filter=repocrypt diff=repocrypt
context.yaml* filter=repocrypt diff=repocrypt
workspace.yaml* filter=repocrypt diff=repocrypt
.gitattributes !filter !diff
"""

GIT_IGNORE = """\
/**/.terraform
/**/.terraform*
/**/terraform.tfstate*
/bin
*~
.idea
*.swp
*.swo
.DS_STORE
.vscode
"""

CANONICAL_FILES = {
    GIT_ATTRIBUTES_FILE: GIT_ATTRIBUTES,
    GIT_IGNORE_FILE: GIT_IGNORE,
}

FILTER_CONFIG = [
    ("filter.{}.smudge".format(FILTER_NAME), "repocrypt decrypt"),
    ("filter.{}.clean".format(FILTER_NAME), "repocrypt encrypt"),
    ("filter.{}.required".format(FILTER_NAME), "true"),
    ("diff.{}.textconv".format(FILTER_NAME), "repocrypt decrypt"),
]


class Git(object):
    """The few git operations the filter policy needs."""

    def __init__(self, cwd=None):
        self.cwd = cwd or os.getcwd()

    def _cmd(self, *args, **kw):
        env = {"LANG": "C", "LC_ALL": "C", "LANGUAGE": "C"}
        return cmd(["git"] + list(args), cwd=self.cwd, env=env, **kw)

    def root(self) -> str:
        stdout, _ = self._cmd("rev-parse", "--show-toplevel")
        return stdout.strip()

    def get_config(self, name) -> Optional[str]:
        stdout, _ = self._cmd(
            "config", "--local", "--get", name, acceptable_returncodes=[0, 1]
        )
        return stdout.strip() or None

    def set_config(self, name, value):
        self._cmd("config", "--local", name, value)

    def index_path(self) -> str:
        stdout, _ = self._cmd("rev-parse", "--git-path", "index")
        return os.path.join(self.cwd, stdout.strip())

    def checkout_head(self, path):
        self._cmd("checkout", "HEAD", "--", path)


class FilterPolicy(object):
    """Keep a repository's filter configuration in its canonical state."""

    def __init__(self, git: Git, root: Optional[str] = None, key_store=None):
        self.git = git
        self.root = root or git.root()
        self.key_store = key_store

    def _path(self, name):
        return os.path.join(self.root, name)

    def install(self):
        output.step("init", "Creating git encryption filters")
        for name, value in FILTER_CONFIG:
            try:
                self.git.set_config(name, value)
            except CmdExecutionError as e:
                raise FilterConfigError.from_context(
                    e.cmd, e.returncode, e.stderr or e.stdout
                )
            output.annotate("{} = {}".format(name, value), debug=True)

        for name, content in CANONICAL_FILES.items():
            atomic_write(self._path(name), content.encode("utf-8"), 0o644)

        if self.key_store is not None:
            self.key_store.materialize()

    def is_current(self) -> bool:
        for name, content in CANONICAL_FILES.items():
            if read_file(self._path(name)) != content.encode("utf-8"):
                output.annotate(
                    "{} is missing or outdated".format(name), debug=True
                )
                return False
        return True

    def check(self) -> bool:
        """Reinitialize unless both policy files are canonical.

        Returns True if the repository had to be (re)initialized.

        """
        if self.is_current():
            return False
        self.install()
        return True

    def unlock(self):
        """Re-checkout everything so the smudge filter decrypts it."""
        index = self.git.index_path()
        output.annotate("Removing {}".format(index), debug=True)
        os.remove(index)
        self.git.checkout_head(self.root)
