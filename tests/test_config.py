"""Tests for configuration management."""

import pytest
import yaml
from pathlib import Path

from config.config_manager import (
    ConfigManager,
    ContentConfig,
    SecurityConfig,
    StorageConfig,
)


class TestConfigManager:
    """Test suite for ConfigManager."""

    @pytest.fixture
    def config_path(self, tmp_path):
        return tmp_path / "config" / "settings.yaml"

    @pytest.fixture
    def sample_config(self):
        """Sample configuration dictionary."""
        return {
            'storage': {
                'db_path': '~/.fielsdown/data/test.db',
                'max_attachment_size': 1048576
            },
            'security': {
                'session_ttl_hours': 24,
                'session_secret': '',
                'secret_path': '~/.fielsdown/keys/session.key',
                'token_path': '~/.fielsdown/session.token',
                'min_credential_length': 8
            },
            'content': {
                'allow_anonymous': True,
                'anonymous_handle': 'anonymous',
                'max_content_length': 500,
                'max_board_name_length': 30,
                'max_thread_depth': 16
            },
            'identity': {
                'default_avatar': 'https://example.org/avatar.png',
                'profile_url_template': '/u/{handle}'
            },
            'logging': {
                'level': 'DEBUG',
                'log_path': '~/.fielsdown/logs/test.log',
                'max_log_size': 1048576,
                'backup_count': 2
            }
        }

    def _write(self, path: Path, config: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.dump(config, f)

    def test_missing_user_file_uses_bundled_defaults(self, config_path):
        """A missing user file is created from the bundled defaults."""
        manager = ConfigManager(config_path)

        assert config_path.exists()
        assert manager.get_config('content', 'allow_anonymous') is False
        assert manager.get_config('security', 'session_ttl_hours') == 720
        assert manager.get_config('identity', 'profile_url_template') == '/profile.html?user={handle}'

    def test_load_user_config(self, config_path, sample_config):
        self._write(config_path, sample_config)

        manager = ConfigManager(config_path)

        assert manager.get_config('content', 'max_thread_depth') == 16
        assert manager.get_config('security', 'min_credential_length') == 8
        assert manager.get_content_config().thread_cache_size == 128

    def test_get_config_section(self, config_path, sample_config):
        self._write(config_path, sample_config)

        manager = ConfigManager(config_path)
        content = manager.get_config('content')

        assert isinstance(content, dict)
        assert content['allow_anonymous'] is True

    def test_unknown_section_raises(self, config_path):
        manager = ConfigManager(config_path)

        with pytest.raises(KeyError):
            manager.get_config('network')

    def test_typed_accessors(self, config_path, sample_config):
        self._write(config_path, sample_config)

        manager = ConfigManager(config_path)

        assert manager.get_storage_config() == StorageConfig(
            db_path='~/.fielsdown/data/test.db', max_attachment_size=1048576
        )
        security = manager.get_security_config()
        assert isinstance(security, SecurityConfig)
        assert security.session_ttl_hours == 24
        content = manager.get_content_config()
        assert isinstance(content, ContentConfig)
        assert content.allow_anonymous is True
        assert manager.get_identity_config().profile_url_template == '/u/{handle}'
        assert manager.get_logging_config().backup_count == 2

    def test_set_and_save_config(self, config_path, sample_config):
        self._write(config_path, sample_config)

        manager = ConfigManager(config_path)
        manager.set_config('content', 'max_thread_depth', 32)
        manager.save_config()

        with open(config_path, 'r') as f:
            saved_config = yaml.safe_load(f)

        assert saved_config['content']['max_thread_depth'] == 32

    def test_partial_user_config_merges_with_defaults(self, config_path):
        self._write(config_path, {'content': {'allow_anonymous': True}})

        manager = ConfigManager(config_path)

        assert manager.get_config('content', 'allow_anonymous') is True
        # Untouched keys of the same section come from defaults
        assert manager.get_config('content', 'max_content_length') == 10000
        assert 'storage' in manager._config

    def test_env_override_integer(self, config_path, monkeypatch):
        monkeypatch.setenv('FIELSDOWN_CONTENT__MAX_THREAD_DEPTH', '8')

        manager = ConfigManager(config_path)

        assert manager.get_config('content', 'max_thread_depth') == 8

    def test_env_override_boolean(self, config_path, monkeypatch):
        monkeypatch.setenv('FIELSDOWN_CONTENT__ALLOW_ANONYMOUS', 'yes')

        manager = ConfigManager(config_path)

        assert manager.get_config('content', 'allow_anonymous') is True

    def test_env_override_ignores_unknown_section(self, config_path, monkeypatch):
        monkeypatch.setenv('FIELSDOWN_NETWORK__PORT', '9000')

        manager = ConfigManager(config_path)

        assert 'network' not in manager._config

    def test_validation_invalid_type(self, config_path, sample_config):
        sample_config['content']['max_thread_depth'] = "deep"
        self._write(config_path, sample_config)

        with pytest.raises(ValueError, match="must be of type"):
            ConfigManager(config_path)

    def test_validation_rejects_bool_for_int(self, config_path, sample_config):
        sample_config['security']['session_ttl_hours'] = True
        self._write(config_path, sample_config)

        with pytest.raises(ValueError, match="must be of type"):
            ConfigManager(config_path)

    def test_validation_out_of_range(self, config_path, sample_config):
        sample_config['security']['session_ttl_hours'] = 0
        self._write(config_path, sample_config)

        with pytest.raises(ValueError, match="must be >="):
            ConfigManager(config_path)

    def test_validation_profile_template_needs_placeholder(self, config_path, sample_config):
        sample_config['identity']['profile_url_template'] = '/profile'
        self._write(config_path, sample_config)

        with pytest.raises(ValueError, match="handle"):
            ConfigManager(config_path)

    def test_invalid_yaml(self, config_path):
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text("content: [unclosed")

        with pytest.raises(ValueError, match="Invalid YAML"):
            ConfigManager(config_path)

    def test_expand_path(self, config_path):
        manager = ConfigManager(config_path)

        expanded = manager.expand_path('~/.fielsdown/data/fielsdown.db')

        assert '~' not in str(expanded)
        assert expanded.name == 'fielsdown.db'
