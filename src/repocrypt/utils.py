import os
import os.path
import shlex
import subprocess
import tempfile

from repocrypt import ErrorKind, ReportingException, output


class CmdExecutionError(ReportingException, RuntimeError):
    """An external command returned an unacceptable exit code."""

    kind = ErrorKind.COMMAND_FAILED

    def __init__(self, cmd, returncode, stdout, stderr):
        self.cmd = cmd
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.args = (cmd, returncode, stdout, stderr)

    def __str__(self):
        return "Exitcode {} while calling: {}\n{}".format(
            self.returncode, self.cmd, self.stderr
        )

    def report(self):
        output.error(self.cmd)
        output.tabular("Return code", str(self.returncode), red=True)
        output.line("STDOUT", red=True)
        output.annotate(self.stdout)
        output.line("STDERR", red=True)
        output.annotate(self.stderr)


def cmd(
    cmd,
    cwd=None,
    env=None,
    acceptable_returncodes=[0],
):
    """Run `cmd` (a list of arguments) and return `(stdout, stderr)`."""
    display = " ".join(shlex.quote(arg) for arg in cmd)
    if env is not None:
        add_to_env = env
        env = os.environ.copy()
        env.update(add_to_env)
    output.annotate("cmd: {}".format(display), debug=True)
    process = subprocess.Popen(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        cwd=cwd,
        env=env,
    )
    stdout, stderr = process.communicate()
    stdout = stdout.decode("utf-8", errors="replace")
    stderr = stderr.decode("utf-8", errors="replace")
    if process.returncode not in acceptable_returncodes:
        raise CmdExecutionError(display, process.returncode, stdout, stderr)
    return stdout, stderr


def ensure_directory(path, mode=0o700):
    if not os.path.isdir(path):
        os.makedirs(path, mode=mode)


def _write_temporary(path, content, mode):
    directory = os.path.dirname(os.path.abspath(path))
    ensure_directory(directory)
    fd, tmp = tempfile.mkstemp(
        prefix=".{}.".format(os.path.basename(path)), dir=directory
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
    except BaseException:
        os.unlink(tmp)
        raise
    return tmp


def atomic_write(path, content, mode=0o600):
    """Replace `path` with `content` so readers never see a partial file."""
    tmp = _write_temporary(path, content, mode)
    try:
        os.replace(tmp, path)
    except BaseException:
        os.unlink(tmp)
        raise


def atomic_write_all(files):
    """Replace several files at once.

    `files` maps paths to `(content, mode)`. All contents are written to
    temporary files before the first one is moved into place, so a failing
    write leaves every target untouched.
    """
    written = []
    try:
        for path, (content, mode) in files.items():
            written.append((_write_temporary(path, content, mode), path))
    except BaseException:
        for tmp, _ in written:
            os.unlink(tmp)
        raise
    for tmp, path in written:
        os.replace(tmp, path)


def create_exclusive(path, content, mode=0o600):
    """Create `path` with `content` unless it exists already.

    Returns True if this call created the file. Concurrent callers race on
    a hard link, so exactly one of them wins and all others see the
    winner's complete content.
    """
    tmp = _write_temporary(path, content, mode)
    try:
        os.link(tmp, path)
    except FileExistsError:
        return False
    finally:
        os.unlink(tmp)
    return True


def read_file(path):
    """Return the content of `path` as bytes or None if it does not exist."""
    try:
        with open(path, "rb") as f:
            return f.read()
    except FileNotFoundError:
        return None
