import json

from app.models.activity_log import ActivityLog
from app.models.enums import UserRole
from app.models.student import Student
from app.services.users import create_user


def _session(app):
    return app.state.session_factory()


def _add_students(app, *names):
    db = _session(app)
    try:
        db.add_all([Student(name=n) for n in names])
        db.commit()
    finally:
        db.close()


def _actions(app):
    db = _session(app)
    try:
        return [a.action for a in db.query(ActivityLog).order_by(ActivityLog.id).all()]
    finally:
        db.close()


def test_requires_authentication(client):
    assert client.get("/backups/list").status_code == 401


def test_requires_backup_role(app, client):
    db = _session(app)
    try:
        create_user(db, username="mentor1", password="mentor123", role=UserRole.MENTOR)
    finally:
        db.close()
    assert client.post("/auth/login", json={"username": "mentor1", "password": "mentor123"}).status_code == 200

    assert client.get("/backups/list").status_code == 403
    assert client.post("/backups/now").status_code == 403


def test_backup_now_and_list(app, admin_client):
    r = admin_client.post("/backups/now")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["ok"] is True
    assert body["file"].endswith("-manual.sqlite")

    listing = admin_client.get("/backups/list").json()
    assert listing["backups"] == [body["file"]]
    assert listing["items"][0]["reason"] == "manual"
    assert listing["items"][0]["size_bytes"] > 0
    assert "backup_now" in _actions(app)


def test_backup_now_copy_failure(app, admin_client, monkeypatch):
    monkeypatch.setattr(app.state.backup_scheduler, "database_path", app.state.settings.database_path.with_name("gone.sqlite"))
    r = admin_client.post("/backups/now")
    assert r.status_code == 500
    assert r.json()["detail"] == "Backup failed"


def test_prune_endpoint(admin_client, make_snapshots):
    names = make_snapshots(4)

    r = admin_client.post("/backups/prune", json={"mode": "oldest", "ratio": 0.5, "keep_min": 1})

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["mode"] == "oldest"
    assert body["total"] == 4
    assert body["deleted_count"] == 2
    assert body["failed_count"] == 0
    assert sorted(body["deleted"]) == names[:2]


def test_prune_endpoint_lenient_parameters(admin_client, make_snapshots):
    names = make_snapshots(4)

    r = admin_client.post("/backups/prune", json={"mode": "whatever", "ratio": "abc", "keep_min": -3})

    body = r.json()
    assert body["mode"] == "latest"
    assert body["ratio"] == 0.5
    assert body["deleted"] == [names[3], names[2]]


def test_prune_endpoint_without_body(admin_client, make_snapshots):
    make_snapshots(2)
    body = admin_client.post("/backups/prune").json()
    assert body["mode"] == "oldest"
    assert body["deleted_count"] == 1


def test_delete_file(admin_client, make_snapshots):
    names = make_snapshots(2)

    assert admin_client.delete("/backups/file/foo.sqlite; rm -rf").status_code == 400
    assert admin_client.delete("/backups/file/db-2020-01-01T00-00-00-000Z-manual.sqlite").status_code == 404

    r = admin_client.delete(f"/backups/file/{names[0]}")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "deleted": names[0]}
    assert admin_client.get("/backups/list").json()["backups"] == [names[1]]


def test_export_download(app, admin_client):
    _add_students(app, "Dana", "Noam")

    r = admin_client.get("/backups/export")

    assert r.status_code == 200
    assert r.headers["content-disposition"].startswith('attachment; filename="portal_backup_')
    doc = r.json()
    assert doc["meta"]["version"] == 1
    students = next(t for t in doc["tables"] if t["name"] == "students")
    assert [row["name"] for row in students["rows"]] == ["Dana", "Noam"]


def test_import_requires_confirmation(admin_client):
    files = {"file": ("backup.json", b'{"tables": []}', "application/json")}
    r = admin_client.post("/backups/import", files=files)
    assert r.status_code == 428


def test_import_rejects_bad_payloads(admin_client):
    headers = {"X-Confirm-Restore": "RESTORE"}
    r = admin_client.post("/backups/import", headers=headers, files={"file": ("b.json", b"{nope", "application/json")})
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid JSON"

    r = admin_client.post("/backups/import", headers=headers, files={"file": ("b.json", b'{"tables": 1}', "application/json")})
    assert r.status_code == 400

    r = admin_client.post("/backups/import", headers=headers)
    assert r.status_code == 400


def test_export_import_cycle(app, admin_client):
    _add_students(app, "Dana", "Noam")
    doc = admin_client.get("/backups/export").json()
    doc["tables"].append({"name": "ghosts", "columns": ["id"], "rows": []})

    db = _session(app)
    try:
        db.query(Student).delete()
        db.commit()
    finally:
        db.close()

    r = admin_client.post(
        "/backups/import",
        headers={"X-Confirm-Restore": "RESTORE"},
        files={"file": ("backup.json", json.dumps(doc).encode(), "application/json")},
    )

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["ok"] is True
    assert body["skipped_tables"] == ["ghosts"]
    assert {"name": "students", "rows": 2} in body["tables"]

    db = _session(app)
    try:
        assert db.query(Student).count() == 2
    finally:
        db.close()
    assert _actions(app)[-1] == "backup_import"
