import os
import shutil
import subprocess

import pytest

import repocrypt._output
from repocrypt.api import PublicKey
from repocrypt.config import Config
from repocrypt.keys import KeyStore


@pytest.fixture(autouse=True)
def isolate_profile(tmp_path_factory, monkeypatch):
    base = tmp_path_factory.mktemp("profile")
    home = base / "home"
    home.mkdir()
    monkeypatch.setitem(os.environ, "HOME", str(home))
    monkeypatch.setitem(
        os.environ, "REPOCRYPT_HOME", str(home / ".repocrypt")
    )
    for name in [
        "REPOCRYPT_ENCRYPTION_KEY_FILE",
        "REPOCRYPT_API_ENDPOINT",
        "REPOCRYPT_TOKEN",
    ]:
        monkeypatch.delitem(os.environ, name, raising=False)
    work = base / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    return home


@pytest.fixture(autouse=True)
def ensure_git_config(monkeypatch):
    monkeypatch.setitem(os.environ, "GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setitem(os.environ, "GIT_AUTHOR_NAME", "Mr. U. Test")
    monkeypatch.setitem(os.environ, "GIT_COMMITTER_EMAIL", "test@example.com")
    monkeypatch.setitem(os.environ, "GIT_COMMITTER_NAME", "Mr. U. Test")
    monkeypatch.setitem(os.environ, "GIT_CONFIG_NOSYSTEM", "1")


@pytest.fixture(autouse=True)
def reset_output():
    output = repocrypt._output.output
    backend, debug = output.backend, output.enable_debug
    yield
    output.backend, output.enable_debug = backend, debug


@pytest.fixture
def config():
    return Config.load()


@pytest.fixture
def key_store(config):
    return KeyStore(config)


@pytest.fixture
def git_repo(tmp_path, monkeypatch):
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    repo = tmp_path / "repo"
    repo.mkdir()
    subprocess.check_call(
        ["git", "init", "--quiet", "."],
        cwd=str(repo),
    )
    monkeypatch.chdir(repo)
    return repo


class FakeAPI(object):
    """Stands in for the identity registry."""

    def __init__(self):
        self.keys = {}
        self.created = []

    def create_key(self, name, content):
        self.created.append((name, content))

    def list_keys(self, emails):
        return [
            PublicKey(email, content)
            for email in emails
            for content in self.keys.get(email, [])
        ]


@pytest.fixture
def api():
    return FakeAPI()
