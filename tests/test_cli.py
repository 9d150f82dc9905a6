"""Tests for the main.py command-line entry point.

Covers:
- keys: two base64 lines of the right sizes
- crypt: one verifiable bcrypt hash per argument; no arguments is an error
- generate users/clients/passwords: loadable JSON, 0600, never overwrites
- no subcommand prints help and fails
"""

import base64
import json
import os
import stat

from auth.tokens import verify_password
from main import main


def test_keys(capsys):
    assert main(["keys"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert [line.split("=", 1)[0] for line in lines] == ["HASH_KEY", "BLOCK_KEY"]
    sizes = [len(base64.b64decode(line.split("=", 1)[1])) for line in lines]
    assert sizes == [64, 32]


def test_crypt(capsys):
    assert main(["crypt", "T0p53cr37", "other"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 2
    hashed = lines[0].split(" --> ")[1].strip("'")
    assert verify_password("T0p53cr37", hashed)


def test_crypt_without_passwords(capsys):
    assert main(["crypt"]) == 2
    assert "at least one password" in capsys.readouterr().err


def test_no_command(capsys):
    assert main([]) == 2
    assert "usage" in capsys.readouterr().out.lower()


def test_generate_users(tmp_path):
    out = tmp_path / "users.json"
    assert main(["generate", "users", "--username", "carol", "--password", "pw", "--out-file", str(out)]) == 0
    data = json.loads(out.read_text())
    assert data[0]["username"] == "carol"
    assert data[0]["state"] == "active"
    assert verify_password("pw", data[0]["password"])
    assert stat.S_IMODE(os.stat(out).st_mode) == 0o600


def test_generate_clients_alias(tmp_path):
    out = tmp_path / "clients.json"
    assert main(["gen", "clients", "--out-file", str(out)]) == 0
    data = json.loads(out.read_text())
    assert data[0]["id"] == "example.com"
    assert "https://example.com/oauth/done" in data[0]["endpoints"]


def test_generate_passwords(tmp_path):
    out = tmp_path / "passwords.json"
    assert main(["generate", "passwords", "--username", "carol", "--password", "pw", "--out-file", str(out)]) == 0
    data = json.loads(out.read_text())
    assert verify_password("pw", data["carol"])


def test_generate_refuses_to_overwrite(tmp_path, capsys):
    out = tmp_path / "clients.json"
    out.write_text("keep me")
    assert main(["generate", "clients", "--out-file", str(out)]) == 1
    assert out.read_text() == "keep me"
    assert "Refusing to overwrite" in capsys.readouterr().err
