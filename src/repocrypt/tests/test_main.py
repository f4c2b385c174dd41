import base64
import io
import os
import sys

import pyrage
import pytest

import repocrypt.main
import repocrypt.recover
from repocrypt.cipher import MAGIC_PREFIX
from repocrypt.keys import KeyRecord
from repocrypt.main import main


@pytest.fixture
def stdin(monkeypatch):
    def feed(data):
        monkeypatch.setattr(sys, "stdin", io.TextIOWrapper(io.BytesIO(data)))

    return feed


def test_random_default_length(capsys):
    main(["random"])
    out, _ = capsys.readouterr()
    assert len(base64.b64decode(out.strip())) == 32


@pytest.mark.parametrize(
    "args, expected", [(["10"], 10), (["--len", "5"], 5), (["0"], 0)]
)
def test_random_length(capsys, args, expected):
    main(["random"] + args)
    out, _ = capsys.readouterr()
    assert len(base64.b64decode(out.strip())) == expected


def test_random_rejects_negative_length(capsys):
    with pytest.raises(SystemExit) as e:
        main(["random", "--len", "-1"])
    assert e.value.code != 0


def test_encrypt_decrypt_via_stdin(capsysbinary, stdin):
    stdin(b"password: hunter2\n")
    main(["encrypt"])
    encrypted, _ = capsysbinary.readouterr()
    assert encrypted.startswith(MAGIC_PREFIX)

    stdin(encrypted)
    main(["encrypt"])
    again, _ = capsysbinary.readouterr()
    assert again == encrypted

    stdin(encrypted)
    main(["decrypt"])
    decrypted, _ = capsysbinary.readouterr()
    assert decrypted == b"password: hunter2\n"


def test_decrypt_file_argument(capsysbinary, stdin, tmp_path):
    stdin(b"secret")
    main(["encrypt"])
    encrypted, _ = capsysbinary.readouterr()
    path = tmp_path / "values.yaml"
    path.write_bytes(encrypted)

    main(["decrypt", str(path)])
    decrypted, _ = capsysbinary.readouterr()
    assert decrypted == b"secret"


def test_decrypt_passes_plaintext_through(capsysbinary, stdin):
    stdin(b"not encrypted")
    main(["decrypt"])
    out, _ = capsysbinary.readouterr()
    assert out == b"not encrypted"


def test_decrypt_with_wrong_key_fails(capsysbinary, stdin, tmp_path):
    stdin(b"secret")
    main(["encrypt"])
    encrypted, _ = capsysbinary.readouterr()

    other = tmp_path / "other-key"
    other.write_bytes(KeyRecord.generate().marshal())
    stdin(encrypted)
    with pytest.raises(SystemExit) as e:
        main(["--encryption-key-file", str(other), "decrypt"])
    assert e.value.code == 1
    out, err = capsysbinary.readouterr()
    assert out == b""
    assert b"ERROR" in err


def test_decrypt_missing_file_fails(capsys):
    with pytest.raises(SystemExit) as e:
        main(["decrypt", "/no/such/file"])
    assert e.value.code == 1
    _, err = capsys.readouterr()
    assert "I/O error" in err
    assert "/no/such/file" in err


def test_export_import_roundtrip(capsysbinary, stdin, tmp_path):
    main(["export"])
    exported, _ = capsysbinary.readouterr()
    assert exported.startswith(b"key: ")

    other = tmp_path / "imported-key"
    stdin(exported)
    main(["--encryption-key-file", str(other), "import"])
    assert other.read_bytes() == exported


def test_import_rejects_malformed_key(stdin, tmp_path):
    target = tmp_path / "key"
    stdin(b"key: abc")
    with pytest.raises(SystemExit) as e:
        main(["--encryption-key-file", str(target), "import"])
    assert e.value.code == 1
    assert not target.exists()


def test_key_file_from_environment(capsysbinary, tmp_path, monkeypatch):
    key_file = tmp_path / "env-key"
    record = KeyRecord.generate()
    key_file.write_bytes(record.marshal())
    monkeypatch.setitem(
        os.environ, "REPOCRYPT_ENCRYPTION_KEY_FILE", str(key_file)
    )
    main(["export"])
    out, _ = capsysbinary.readouterr()
    assert out == record.marshal()


def test_no_command_prints_usage():
    with pytest.raises(SystemExit) as e:
        main([])
    assert e.value.code == 1


def test_share_requires_email():
    with pytest.raises(SystemExit) as e:
        main(["share"])
    assert e.value.code == 2


def test_setup_keys_requires_name():
    with pytest.raises(SystemExit) as e:
        main(["setup-keys"])
    assert e.value.code == 2


def test_setup_keys_without_api_endpoint(capsys):
    with pytest.raises(SystemExit) as e:
        main(["setup-keys", "--name", "laptop"])
    assert e.value.code == 1
    _, err = capsys.readouterr()
    assert "REPOCRYPT_API_ENDPOINT" in err


def test_init_installs_filters(git_repo):
    main(["init"])
    assert (git_repo / ".gitattributes").exists()
    assert (git_repo / ".gitignore").exists()


def test_init_outside_repository_root(git_repo, capsys):
    (git_repo / "sub").mkdir()
    os.chdir(str(git_repo / "sub"))
    with pytest.raises(SystemExit) as e:
        main(["init"])
    assert e.value.code == 1
    _, err = capsys.readouterr()
    assert "root of your git repository" in err
    assert not (git_repo / ".gitattributes").exists()


def test_check_is_quiet_when_current(git_repo, capsys):
    main(["init"])
    capsys.readouterr()
    main(["check"])
    _, err = capsys.readouterr()
    assert "reinstalled" not in err


def test_ssh_keygen(tmp_path):
    main(["ssh-keygen", "--name", "id_test", "--directory", str(tmp_path)])
    assert (tmp_path / "id_test").exists()
    assert (tmp_path / "id_test.pub").exists()


def test_malformed_config_file_is_reported(isolate_profile, capsys):
    profile = isolate_profile / ".repocrypt"
    profile.mkdir()
    (profile / "config.cfg").write_text("not an ini file\n")
    with pytest.raises(SystemExit) as e:
        main(["random"])
    assert e.value.code == 1
    _, err = capsys.readouterr()
    assert "Invalid configuration file" in err
    assert "config.cfg" in err


def test_recover_reports_unreadable_kubectl_output(monkeypatch, capsys):
    monkeypatch.setattr(
        repocrypt.recover, "cmd", lambda args: ("<html>proxy error</html>", "")
    )
    with pytest.raises(SystemExit) as e:
        main(["recover"])
    assert e.value.code == 1
    _, err = capsys.readouterr()
    assert "Could not read secret console/console-conf" in err


def test_unexpected_exception_is_reported(monkeypatch, capsys):
    def random_string(n):
        raise RuntimeError("boom")

    monkeypatch.setattr(repocrypt.main, "random_string", random_string)
    with pytest.raises(SystemExit) as e:
        main(["random"])
    assert e.value.code == 1
    _, err = capsys.readouterr()
    assert "Unexpected exception" in err
    assert "RuntimeError: boom" in err


def test_share_writes_envelope_and_reminds_to_commit(
    git_repo, api, monkeypatch, capsys
):
    identity = pyrage.x25519.Identity.generate()
    api.keys = {"alice@example.com": [str(identity.to_public())]}
    monkeypatch.setattr(repocrypt.main.Client, "from_config", lambda c: api)
    main(["share", "--email", "alice@example.com"])
    _, err = capsys.readouterr()
    assert "alice@example.com" in err
    assert "Commit .repocrypt/" in err
    assert (git_repo / ".repocrypt" / "key.age").exists()
    assert (git_repo / ".repocrypt" / "recipients.cfg").exists()
