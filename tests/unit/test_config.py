"""Tests for configuration loading and credential resolution."""

import base64
import json

import pytest
import yaml

from registry_ui.config import (
    AccessControlSettings,
    AppConfig,
    ConfigError,
    PurgeSettings,
    RegistrySettings,
    load_config,
    read_keychain,
    resolve_credentials,
)


@pytest.fixture
def write_config(tmp_path):
    def _write(data):
        path = tmp_path / "config.yml"
        path.write_text(yaml.safe_dump(data))
        return str(path)

    return _write


class TestLoadConfig:
    def test_full_config(self, write_config):
        path = write_config(
            {
                "listen_addr": "127.0.0.1:9000",
                "registry": {
                    "url": "https://registry.example.com",
                    "username": "admin",
                    "password": "pw",
                },
                "performance": {
                    "catalog_refresh_interval": 5,
                    "tags_count_refresh_interval": 0,
                },
                "access_control": {"admins": ["alice"]},
                "purge_tags": {
                    "keep_days": 30,
                    "keep_count": 5,
                    "keep_regexp": "^v\\d+$",
                    "schedule": "0 3 * * *",
                },
            }
        )

        config = load_config(path)

        assert config.listen_host_port == ("127.0.0.1", 9000)
        assert config.registry.url == "https://registry.example.com"
        assert config.performance.tags_count_refresh_interval == 0
        assert config.purge_tags.schedule == "0 3 * * *"
        policy = config.purge_tags.policy()
        assert (policy.keep_days, policy.keep_count) == (30, 5)
        assert policy.compiled_regexp().search("v12")

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("")

        config = load_config(str(path))

        assert config.listen_host_port == ("0.0.0.0", 8000)
        assert config.purge_tags.keep_days == 90
        assert config.performance.catalog_refresh_interval == 10

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(tmp_path / "nope.yml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("registry: [unclosed")
        with pytest.raises(ConfigError, match="Cannot parse"):
            load_config(str(path))

    @pytest.mark.parametrize(
        "data",
        [
            {"purge_tags": {"schedule": "every night"}},
            {"purge_tags": {"keep_regexp": "(oops"}},
            {"performance": {"catalog_refresh_interval": -1}},
            {"registry": {"timeout": 0}},
        ],
    )
    def test_invalid_values(self, write_config, data):
        with pytest.raises(ConfigError, match="Invalid config"):
            load_config(write_config(data))


class TestAccessControl:
    def test_admins_only(self):
        access = AccessControlSettings(admins=["alice"])
        assert access.can_delete("alice")
        assert not access.can_delete("bob")
        assert not access.can_delete(None)
        assert not access.can_delete("")

    def test_anyone(self):
        assert AccessControlSettings(anyone_can_delete=True).can_delete(None)


class TestPurgeSettings:
    def test_policy_drops_schedule(self):
        settings = PurgeSettings(keep_count=7, schedule="*/5 * * * *")
        policy = settings.policy()
        assert policy.keep_count == 7
        assert not hasattr(policy, "schedule")


class TestCredentials:
    def test_inline_password(self):
        settings = RegistrySettings(username="u", password="p")
        assert resolve_credentials(settings) == ("u", "p")

    def test_password_file(self, tmp_path):
        secret = tmp_path / "password"
        secret.write_text("s3cret\n")
        settings = RegistrySettings(username="u", password_file=str(secret))

        assert resolve_credentials(settings) == ("u", "s3cret")

    def test_missing_password_file(self, tmp_path):
        settings = RegistrySettings(username="u", password_file=str(tmp_path / "x"))
        with pytest.raises(ConfigError):
            resolve_credentials(settings)

    def test_registry_config(self, tmp_path):
        secret = tmp_path / "password"
        secret.write_text("s3cret")
        config = AppConfig(
            registry={
                "url": "https://registry.example.com/",
                "username": "u",
                "password_file": str(secret),
                "verify_tls": False,
            }
        )

        client_config = config.registry_config()

        assert client_config.url == "https://registry.example.com"
        assert client_config.password == "s3cret"
        assert client_config.verify_tls is False


class TestKeychain:
    def test_username_password_entry(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(
            json.dumps({"auths": {"registry.example.com": {"username": "u", "password": "p"}}})
        )
        assert read_keychain("registry.example.com", path) == ("u", "p")

    def test_base64_auth_entry(self, tmp_path):
        path = tmp_path / "config.json"
        auth = base64.b64encode(b"robot:tok:en").decode()
        path.write_text(json.dumps({"auths": {"https://reg.test:5000": {"auth": auth}}}))

        assert read_keychain("reg.test:5000", path) == ("robot", "tok:en")

    def test_no_entry(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"auths": {}}))
        with pytest.raises(ConfigError):
            read_keychain("registry.example.com", path)

    def test_docker_config_env(self, tmp_path, monkeypatch):
        (tmp_path / "config.json").write_text(
            json.dumps({"auths": {"reg.test": {"username": "env", "password": "pw"}}})
        )
        monkeypatch.setenv("DOCKER_CONFIG", str(tmp_path))
        settings = RegistrySettings(url="https://reg.test", auth_with_keychain=True)

        assert resolve_credentials(settings) == ("env", "pw")
