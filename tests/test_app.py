"""Tests for app wiring: config, error bodies, health and schema setup."""

from __future__ import annotations

import pytest

from config import ProductionConfig


class TestErrors:
    def test_unknown_api_route_is_json(self, client):
        resp = client.get("/api/nope")
        assert resp.status_code == 404
        assert "error" in resp.get_json()

    def test_wrong_method_is_json(self, client):
        resp = client.get("/api/login")
        assert resp.status_code == 405
        assert "error" in resp.get_json()

    def test_non_object_body(self, client):
        resp = client.post("/api/login", data="[]", content_type="application/json")
        assert resp.status_code == 400
        assert resp.get_json() == {"error": "request body must be a JSON object"}

    def test_unexpected_error_hides_details(self, app, teacher_client, monkeypatch):
        import class_service

        def explode(self, teacher_id):
            raise KeyError("internal secret")

        monkeypatch.setattr(class_service.ClassService, "list_for_teacher", explode)
        resp = teacher_client.get("/api/classes")
        assert resp.status_code == 500
        assert resp.get_json() == {"error": "internal server error"}


class TestHealth:
    def test_health(self, client):
        body = client.get("/api/health").get_json()
        assert body["status"] == "ok"
        assert body["tasks"] == "eager"

    def test_ready(self, client):
        assert client.get("/api/ready").status_code == 200

    def test_request_id_header(self, client):
        resp = client.get("/api/health", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"


class TestConfig:
    def test_production_rejects_default_secret(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SECRET_KEY", "dev-key-change-in-production")
        with pytest.raises(RuntimeError, match="SECRET_KEY"):
            ProductionConfig.validate()

    def test_production_rejects_unknown_provider(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SECRET_KEY", "s3cret")
        monkeypatch.setattr(ProductionConfig, "LLM_API_KEY", "k")
        monkeypatch.setattr(ProductionConfig, "LLM_PROVIDER", "gemini")
        with pytest.raises(RuntimeError, match="'openai' or 'anthropic'"):
            ProductionConfig.validate()

    @pytest.mark.parametrize("provider", ["openai", "anthropic"])
    def test_production_accepts_known_providers(self, monkeypatch, provider):
        monkeypatch.setattr(ProductionConfig, "SECRET_KEY", "s3cret")
        monkeypatch.setattr(ProductionConfig, "LLM_API_KEY", "k")
        monkeypatch.setattr(ProductionConfig, "LLM_PROVIDER", provider)
        ProductionConfig.validate()

    def test_production_warns_without_llm_key(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SECRET_KEY", "s3cret")
        monkeypatch.setattr(ProductionConfig, "LLM_API_KEY", "")
        with pytest.warns(UserWarning, match="LLM_API_KEY"):
            ProductionConfig.validate()

    def test_test_overrides_apply_on_top_of_testing_defaults(self, app):
        assert app.config["TESTING"] is True
        assert app.config["TASKS_EAGER"] is True
        assert app.config["LLM_MODEL"]


class TestDatabase:
    def test_migrations_recorded(self, db):
        versions = [r["version"] for r in db.execute("SELECT version FROM schema_version ORDER BY version")]
        assert versions == [1, 2, 3, 4]

    def test_migrations_are_idempotent(self, db):
        from database import run_migrations
        run_migrations()
        count = db.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
        assert count == 4

    def test_transaction_rolls_back(self, db):
        from database import transaction
        with pytest.raises(RuntimeError):
            with transaction(db):
                db.execute("INSERT INTO feedback (title, content) VALUES ('t', 'c')")
                raise RuntimeError("abort")
        assert db.execute("SELECT COUNT(*) FROM feedback").fetchone()[0] == 0


class TestCli:
    def test_create_user_command(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["create-user", "root", "rootpass", "--role", "admin"])
        assert result.exit_code == 0, result.output
        assert "created admin root" in result.output
