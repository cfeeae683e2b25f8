"""Tests for application configuration."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from k8gate.config import DEFAULT_TEMPLATES_DIR, Settings
from k8gate.exceptions import ConfigError


class TestSettings:
    def test_default_settings(self) -> None:
        s = Settings(_env_file=None)
        assert s.debug is False
        assert s.port == 8080
        assert s.passwords_template == "alpine.passwords"
        assert s.passwords_path == DEFAULT_TEMPLATES_DIR
        assert s.collaborator_concurrency == 3
        assert s.state_provider == "kubernetes"
        assert s.production_branch == "production"

    def test_settings_from_fixture(self, test_settings: Settings) -> None:
        assert test_settings.access_token == "test-token"
        assert test_settings.directory_keys_base.is_dir()

    def test_roles_are_split_and_trimmed(self) -> None:
        s = Settings(
            _env_file=None,
            allow_ssh_access_roles=" admin, write ,,maintain",
            allow_ssh_access_prod_roles="admin",
        )
        assert s.allowed_roles == frozenset({"admin", "write", "maintain"})
        assert s.allowed_prod_roles == frozenset({"admin"})

    def test_legacy_prod_roles_variable_is_accepted(self) -> None:
        with patch.dict("os.environ", {"ALLOW_SSH_ACCES_PROD_ROLES": "admin,maintain"}):
            s = Settings(_env_file=None)
        assert s.allowed_prod_roles == frozenset({"admin", "maintain"})

    def test_concurrency_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            Settings(_env_file=None, collaborator_concurrency=0)


class TestValidateRuntime:
    def test_valid_settings_pass(self, test_settings: Settings) -> None:
        test_settings.validate_runtime()

    def test_missing_token_and_keys_dir_reported_together(self, tmp_path: Path) -> None:
        s = Settings(
            _env_file=None,
            directory_keys_base=tmp_path / "missing",
            kubernetes_cluster_endpoint="https://kubernetes.test",
            kubernetes_cluster_namespace="ops",
        )
        with pytest.raises(ConfigError) as exc_info:
            s.validate_runtime()
        message = str(exc_info.value)
        assert "ACCESS_TOKEN" in message
        assert "DIRECTORY_KEYS_BASE" in message

    def test_unknown_state_provider_rejected(self, test_settings: Settings) -> None:
        s = test_settings.model_copy(update={"state_provider": "etcd"})
        with pytest.raises(ConfigError, match="STATE_PROVIDER"):
            s.validate_runtime()

    def test_kubernetes_provider_needs_namespace(self, test_settings: Settings) -> None:
        s = test_settings.model_copy(
            update={"state_provider": "kubernetes", "kubernetes_cluster_namespace": ""}
        )
        with pytest.raises(ConfigError, match="KUBERNETES_CLUSTER_NAMESPACE"):
            s.validate_runtime()

    def test_read_only_replica_needs_no_token(self, tmp_path: Path) -> None:
        s = Settings(
            _env_file=None,
            sync_enabled=False,
            directory_keys_base=tmp_path / "missing",
            state_provider="local",
            state_path=tmp_path / "state.json",
        )
        s.validate_runtime()


class TestCliEntry:
    def test_cli_entry_uses_app_settings(self) -> None:
        """cli_entry() should use the global app's settings, not create a new Settings()."""
        from k8gate.main import app, cli_entry

        original_settings = getattr(app.state, "settings", None)
        app.state.settings = Settings(_env_file=None, host="127.0.0.1", port=9999, debug=True)

        try:
            with patch("uvicorn.run") as mock_run:
                cli_entry()

            mock_run.assert_called_once_with(
                "k8gate.main:app",
                host="127.0.0.1",
                port=9999,
                reload=True,
            )
        finally:
            if original_settings is None:
                del app.state.settings
            else:
                app.state.settings = original_settings
