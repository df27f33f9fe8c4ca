import json
from hashlib import sha256

from click.testing import CliRunner

from proofvault.cli.main import cli

ALICE_HASH = sha256(b'{"age":30,"name":"Alice"}').hexdigest()


def test_hash_json_file(tmp_path):
    path = tmp_path / "alice.json"
    path.write_text('{\n  "name": "Alice",\n  "age": 30\n}\n', encoding="utf-8")

    result = CliRunner().invoke(cli, ["hash", str(path)])

    assert result.exit_code == 0, result.output
    assert result.output.strip() == ALICE_HASH


def test_hash_binary_file_verbose(tmp_path):
    path = tmp_path / "photo.bin"
    path.write_bytes(b"\x89PNG\r\n")

    result = CliRunner().invoke(cli, ["hash", "--verbose", str(path)])

    report = json.loads(result.output)
    assert report == {"proofHash": sha256(b"\x89PNG\r\n").hexdigest(), "type": "binary", "sizeBytes": 6}


def test_hash_json_text():
    result = CliRunner().invoke(cli, ["hash", "--json", '{"name":"Alice","age":30}', "-v"])

    report = json.loads(result.output)
    assert report["proofHash"] == ALICE_HASH
    assert report["canonicalJson"] == '{"age":30,"name":"Alice"}'


def test_hash_rejects_bad_arguments(tmp_path):
    runner = CliRunner()

    neither = runner.invoke(cli, ["hash"])
    bad_json = runner.invoke(cli, ["hash", "--json", "{nope"])

    assert neither.exit_code == 2
    assert bad_json.exit_code == 1
    assert "Invalid JSON data" in bad_json.output


def test_init_db_creates_tables(tmp_path, monkeypatch):
    import proofvault.config as config

    db_path = tmp_path / "cli.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setattr(config, "_settings", None)

    result = CliRunner().invoke(cli, ["init-db"])

    assert result.exit_code == 0, result.output
    assert db_path.exists()
