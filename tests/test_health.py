"""
tests/test_health.py -- GET /health and application state wiring.

Covers:
  - 200 response with status, version, and storage fields
  - No authentication required
  - init_state() over the SQL engine, seeded from JSON files
  - password files chain ahead of the registry checkers
"""

from __future__ import annotations

import json

from fastapi import FastAPI

from core.config import Settings


def test_health_returns_200(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": "0.3.0", "storage": "memory"}


def test_health_no_auth_required(client):
    """Explicitly make the request with no credentials."""
    client.cookies.clear()
    resp = client.get("/health", headers={})
    assert resp.status_code == 200
    assert "www-authenticate" not in resp.headers


def test_init_state_sql_engine_with_seed_files(tmp_path):
    from api.main import init_state

    clients_file = tmp_path / "clients.json"
    clients_file.write_text(json.dumps([{"id": "example.com", "endpoints": ["https://example.com/done"]}]))
    users_file = tmp_path / "users.json"
    users_file.write_text(json.dumps([{"id": 5, "username": "carol", "password": "pw"}]))

    settings = Settings(
        debug=True,
        storage_engine="sql",
        database_url=f"sqlite:///{tmp_path / 'authsvc.db'}",
        clients_file=str(clients_file),
        users_file=str(users_file),
    )
    app = FastAPI()
    init_state(app, settings)
    try:
        assert app.state.engine is not None
        assert app.state.clients.verify_redirect("example.com", "https://example.com/done")
        assert app.state.users.find_active("carol").id == 5
        assert app.state.password_checker.check("carol", "pw")
    finally:
        app.state.engine.dispose()


def test_init_state_with_passwords_file(tmp_path):
    from api.main import init_state
    from auth.tokens import hash_password

    users_file = tmp_path / "users.json"
    users_file.write_text(json.dumps({"id": 1, "username": "dave"}))
    passwords_file = tmp_path / "passwords.json"
    passwords_file.write_text(json.dumps({"dave": hash_password("static")}))

    settings = Settings(debug=True, users_file=str(users_file), passwords_file=str(passwords_file))
    app = FastAPI()
    init_state(app, settings)
    assert app.state.engine is None
    assert app.state.password_checker.check("dave", "static")
    assert not app.state.password_checker.check("dave", "")
