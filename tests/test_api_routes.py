"""
tests/test_api_routes.py -- Integration tests for the JSON API under /api/.

Most tests run against open_client (directory not configured, so the gate is
open). Directory-specific behaviour uses app_client plus a session cookie.

Every error response must carry the {"error": "<message>"} envelope.
"""

from __future__ import annotations

from conftest import session_headers


def _import_keys(client, *keys: str) -> list[dict]:
    resp = client.post("/api/licenses/import", json={"licenses": [{"key": k} for k in keys]})
    assert resp.status_code == 200
    return client.get("/api/state").json()["licenses"]


def _import_user(client, name: str, email: str) -> dict:
    resp = client.post("/api/users/import", json={"users": [{"name": name, "email": email}]})
    assert resp.status_code == 200
    return next(u for u in client.get("/api/state").json()["users"] if u["email"] == email)


class TestState:
    def test_empty_state(self, open_client) -> None:
        resp = open_client.get("/api/state")
        assert resp.status_code == 200
        assert resp.json() == {"users": [], "licenses": []}

    def test_state_shape(self, open_client) -> None:
        user = _import_user(open_client, "Alice", "alice@corp.test")
        licenses = _import_keys(open_client, "AAA-111")
        assert set(user) == {"id", "name", "email"}
        assert licenses == [
            {"id": licenses[0]["id"], "key": "AAA-111", "assigned_user_id": None, "comment": "", "pc": ""}
        ]


class TestLicenseImport:
    def test_duplicates_are_warnings(self, open_client) -> None:
        resp = open_client.post(
            "/api/licenses/import",
            json={"licenses": [{"key": "AAA-111"}, {"key": "AAA-111"}, {"key": " "}]},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["licenses_imported"] == 1
        assert body["warnings"] == ["duplicate key: AAA-111", "skipped license without key"]

    def test_long_key_imported_alongside_others(self, open_client) -> None:
        long_key = "K" * 300
        resp = open_client.post(
            "/api/licenses/import",
            json={"licenses": [{"key": long_key, "pc": "P" * 300}, {"key": "OK-1"}]},
        )
        assert resp.status_code == 200
        assert resp.json()["licenses_imported"] == 2
        keys = [lic["key"] for lic in open_client.get("/api/state").json()["licenses"]]
        assert sorted(keys) == sorted([long_key, "OK-1"])

    def test_long_manual_user_fields_accepted(self, open_client) -> None:
        user = _import_user(open_client, "N" * 300, "a" * 300 + "@corp.test")
        assert user["name"] == "N" * 300

    def test_empty_list_rejected(self, open_client) -> None:
        resp = open_client.post("/api/licenses/import", json={"licenses": []})
        assert resp.status_code == 400
        assert resp.json() == {"error": "provide at least one license"}

    def test_malformed_body_is_400(self, open_client) -> None:
        resp = open_client.post("/api/licenses/import", json={"licenses": "nope"})
        assert resp.status_code == 400
        assert resp.json()["error"].startswith("invalid request")

    def test_invalid_json_is_400(self, open_client) -> None:
        resp = open_client.post(
            "/api/licenses/import", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 400
        assert "error" in resp.json()


class TestAssignment:
    def test_assign_update_unassign(self, open_client) -> None:
        user = _import_user(open_client, "Alice", "alice@corp.test")
        license_id = _import_keys(open_client, "AAA-111")[0]["id"]

        resp = open_client.post("/api/assign", json={"user_id": user["id"], "license_id": license_id})
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
        lic = open_client.get("/api/state").json()["licenses"][0]
        assert lic["assigned_user_id"] == user["id"]

        resp = open_client.post(
            "/api/license/update", json={"license_id": license_id, "comment": "renewed", "pc": "PC-1"}
        )
        assert resp.status_code == 200
        lic = open_client.get("/api/state").json()["licenses"][0]
        assert (lic["comment"], lic["pc"]) == ("renewed", "PC-1")

        resp = open_client.post("/api/license/unassign", json={"license_id": license_id})
        assert resp.status_code == 200
        assert open_client.get("/api/state").json()["licenses"][0]["assigned_user_id"] is None

    def test_assign_requires_both_ids(self, open_client) -> None:
        resp = open_client.post("/api/assign", json={"license_id": 1})
        assert resp.status_code == 400
        assert resp.json() == {"error": "user_id and license_id are required"}

    def test_assign_unknown_user(self, open_client) -> None:
        license_id = _import_keys(open_client, "AAA-111")[0]["id"]
        resp = open_client.post("/api/assign", json={"user_id": 999, "license_id": license_id})
        assert resp.status_code == 400
        assert resp.json() == {"error": "user not found"}

    def test_assign_unknown_license(self, open_client) -> None:
        user = _import_user(open_client, "Alice", "alice@corp.test")
        resp = open_client.post("/api/assign", json={"user_id": user["id"], "license_id": 999})
        assert resp.status_code == 400
        assert resp.json() == {"error": "license not found"}

    def test_update_and_unassign_require_license_id(self, open_client) -> None:
        for path in ("/api/license/update", "/api/license/unassign"):
            resp = open_client.post(path, json={})
            assert resp.status_code == 400
            assert resp.json() == {"error": "license_id is required"}

    def test_unassign_unknown_license(self, open_client) -> None:
        resp = open_client.post("/api/license/unassign", json={"license_id": 404})
        assert resp.status_code == 400
        assert resp.json() == {"error": "license not found"}


class TestUsers:
    def test_manual_import_in_degraded_mode(self, open_client) -> None:
        resp = open_client.post(
            "/api/users/import",
            json={"users": [{"name": "Alice", "email": "Alice@Corp.Test"}, {"name": "", "email": ""}]},
        )
        assert resp.status_code == 200
        assert resp.json() == {"users_imported": 1, "warnings": ["skipped user without name and email"]}

        users = open_client.get("/api/users/all").json()["users"]
        assert users[0]["email"] == "alice@corp.test"
        assert users[0]["source"] == "manual"
        assert users[0]["active"] is True
        assert users[0]["login"] == ""

    def test_manual_import_refused_with_directory(self, app_client) -> None:
        resp = app_client.post(
            "/api/users/import",
            json={"users": [{"name": "Alice", "email": "alice@corp.test"}]},
            headers=session_headers(app_client, "alice"),
        )
        assert resp.status_code == 400
        assert "LDAP is enabled" in resp.json()["error"]

    def test_empty_user_list_rejected(self, open_client) -> None:
        resp = open_client.post("/api/users/import", json={"users": []})
        assert resp.status_code == 400
        assert resp.json() == {"error": "provide at least one user"}

    def test_users_all_includes_inactive(self, app_client, fake_directory) -> None:
        headers = session_headers(app_client, "alice")
        reconciler = app_client.app.state.reconciler
        reconciler.sync_users()
        fake_directory.remove_user("bob")
        reconciler.sync_users()

        active = app_client.get("/api/state", headers=headers).json()["users"]
        everyone = app_client.get("/api/users/all", headers=headers).json()["users"]
        assert [u["email"] for u in active] == ["alice@corp.test"]
        assert [(u["login"], u["active"]) for u in everyone] == [("alice", True), ("bob", False)]


class TestComputers:
    def test_lists_active_computers(self, app_client, fake_directory) -> None:
        fake_directory.add_computer("PC-001", dNSHostName="pc-001.corp.test", description="Front desk")
        app_client.app.state.reconciler.sync_computers()
        resp = app_client.get("/api/computers", headers=session_headers(app_client, "alice"))
        assert resp.status_code == 200
        computers = resp.json()["computers"]
        assert len(computers) == 1
        assert computers[0]["name"] == "PC-001"
        assert computers[0]["host_address"] == "pc-001.corp.test"
        assert computers[0]["description"] == "Front desk"

    def test_empty(self, open_client) -> None:
        assert open_client.get("/api/computers").json() == {"computers": []}


class TestMeetings:
    def test_import_and_read_back(self, open_client) -> None:
        resp = open_client.post(
            "/api/meetings/import",
            json={
                "exported_at": "2026-01-05T08:00:00Z",
                "items": [
                    {"id": "m1", "subject": "Standup", "start": "2026-01-06T09:00:00", "is_recurring": True},
                    {"id": "", "subject": "no id"},
                ],
            },
        )
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "meetings_imported": 1}

        state = open_client.get("/api/meetings").json()
        assert state["exported_at"] == "2026-01-05T08:00:00Z"
        assert [m["subject"] for m in state["items"]] == ["Standup"]
        assert state["items"][0]["is_recurring"] is True

    def test_duplicate_ids_keep_first(self, open_client) -> None:
        resp = open_client.post(
            "/api/meetings/import",
            json={"exported_at": "t1", "items": [{"id": "m1", "subject": "A"}, {"id": "m1", "subject": "B"}]},
        )
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "meetings_imported": 1}
        assert [m["subject"] for m in open_client.get("/api/meetings").json()["items"]] == ["A"]

    def test_empty_import_rejected(self, open_client) -> None:
        resp = open_client.post("/api/meetings/import", json={"exported_at": "x", "items": []})
        assert resp.status_code == 400
        assert resp.json() == {"error": "provide at least one meeting"}


class TestNotFound:
    def test_unknown_api_route_uses_envelope(self, open_client) -> None:
        resp = open_client.get("/api/nope")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Not Found"}
