import json

import pytest

import cli


class _Resp:
    def __init__(self, payload, ok=True):
        self._payload = payload
        self.ok = ok

    def json(self):
        return self._payload


@pytest.fixture
def fake_api(monkeypatch):
    calls = []
    states = {"post": [], "get": []}

    def fake_post(url, json=None, params=None, auth=None, timeout=None):
        calls.append(("POST", url, json, params, auth))
        return states["post"].pop(0)

    def fake_get(url, params=None, auth=None, timeout=None):
        calls.append(("GET", url, None, params, auth))
        return states["get"].pop(0)

    monkeypatch.setattr(cli.requests, "post", fake_post)
    monkeypatch.setattr(cli.requests, "get", fake_get)
    monkeypatch.setattr(cli.time, "sleep", lambda s: None)
    return calls, states


def test_grant_polls_until_terminal_then_resets(fake_api, capsys):
    calls, states = fake_api
    states["post"] = [_Resp({"state": "running"}), _Resp({"state": "idle"})]
    states["get"] = [_Resp({"state": "running"}), _Resp({"state": "success"})]

    rc = cli.main(["--user", "0", "grant", "--role", "watch-notifications", "--package", "com.example.watch"])

    assert rc == 0
    assert calls[0][0] == "POST"
    assert calls[0][1].endswith("/roles/watch-notifications/holders")
    assert calls[0][2] == {"package": "com.example.watch", "add": True, "user": 0}
    assert calls[-1][1].endswith("/holders/com.example.watch/reset")
    assert json.loads(capsys.readouterr().out)["state"] == "success"


def test_revoke_failure_returns_non_zero(fake_api):
    calls, states = fake_api
    states["post"] = [_Resp({"state": "failure"}), _Resp({"state": "idle"})]

    rc = cli.main(
        ["--admin-user", "ops", "--admin-password", "pw", "revoke", "--role", "watch-notifications", "--package", "com.example.watch"]
    )

    assert rc == 1
    assert calls[0][2] == {"package": "com.example.watch", "add": False}
    assert calls[0][4] == ("ops", "pw")


def test_rejected_request_prints_error(fake_api, capsys):
    calls, states = fake_api
    states["post"] = [_Resp({"detail": "Unknown role 'x'."}, ok=False)]

    assert cli.main(["grant", "--role", "x", "--package", "p"]) == 1
    assert "Unknown role" in capsys.readouterr().out


def test_listing_commands(fake_api):
    calls, states = fake_api
    states["get"] = [_Resp([]), _Resp([]), _Resp({"holders": []}), _Resp([])]

    assert cli.main(["roles"]) == 0
    assert cli.main(["apps", "--role", "watch-notifications"]) == 0
    assert cli.main(["holders", "--role", "watch-notifications"]) == 0
    assert cli.main(["events", "--limit", "3"]) == 0
    assert [c[1].split("8000")[1] for c in calls] == [
        "/roles",
        "/roles/watch-notifications/applications",
        "/roles/watch-notifications/holders",
        "/events",
    ]
    assert calls[-1][3] == {"limit": 3}
