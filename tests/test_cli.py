# Tests for the accessgate command line.
# Created: 2026-10-10

import json

import pytest

import accessgate.__main__ as cli


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda level="INFO": None)


@pytest.fixture
def contents(tmp_path, groups_config):
    path = tmp_path / "home" / "config"
    path.mkdir(parents=True)
    (path / "groups.json").write_text(json.dumps(groups_config))
    return path


def test_create_and_rotate_client(capsys, contents):
    assert cli.main(["create-client", "--name", "reporting", "--scope", "models:read"]) == 0
    created = json.loads(capsys.readouterr().out)
    assert created["clientId"].startswith("client_")
    assert len(created["clientSecret"]) == 64

    stored = json.loads((contents / "oauth-clients.json").read_text())
    assert stored["clients"][created["clientId"]]["scopes"] == ["models:read"]

    assert cli.main(["rotate-secret", created["clientId"]]) == 0
    rotated = json.loads(capsys.readouterr().out)
    assert rotated["clientSecret"] != created["clientSecret"]


def test_public_client_prints_no_secret(capsys, contents):
    cli.main(["create-client", "--name", "spa", "--type", "public", "--grant-type", "authorization_code"])
    assert json.loads(capsys.readouterr().out)["clientSecret"] is None


def test_rotate_unknown_client_fails(contents):
    assert cli.main(["rotate-secret", "client_missing"]) == 2


def test_check_admin(capsys, contents):
    assert cli.main(["check-admin"]) == 1
    assert "no administrator" in capsys.readouterr().out

    assert cli.main(["create-user", "root", "--password", "pw-123", "--group", "admins"]) == 0
    assert json.loads(capsys.readouterr().out)["username"] == "root"

    assert cli.main(["check-admin"]) == 0


def test_duplicate_user_fails(contents):
    assert cli.main(["create-user", "root", "--password", "pw-123"]) == 0
    assert cli.main(["create-user", "root", "--password", "pw-123"]) == 2
