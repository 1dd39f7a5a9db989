"""Tests for configuration management."""

import os
import tempfile

import pytest
import yaml
from pydantic import ValidationError

from repo_migrate.config.config import (
    Config,
    MigrationConfig,
    SourceConfig,
    StorageConfig,
    TargetConfig,
)

ENV_VARS = [
    'GH_PAT',
    'GH_API_URL',
    'GH_SOURCE_PAT',
    'ADO_PAT',
    'ADO_SERVER_URL',
    'BBS_USERNAME',
    'BBS_PASSWORD',
    'AZURE_STORAGE_CONNECTION_STRING',
    'AWS_ACCESS_KEY_ID',
    'AWS_SECRET_ACCESS_KEY',
    'AWS_SESSION_TOKEN',
    'AWS_REGION',
    'GITHUB_OWNED_STORAGE_MULTIPART_MEBIBYTES',
    'MIGRATION_MAX_CONCURRENT',
    'MIGRATION_TEMP_DIR',
    'LOG_LEVEL',
    'LOG_FILE',
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Environment without any tool variable and without a .env file."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestTargetConfig:
    """Test target configuration."""

    def test_defaults(self):
        config = TargetConfig()

        assert config.token is None
        assert config.api_url == 'https://api.github.com'
        assert config.uploads_url == 'https://uploads.github.com'

    def test_url_validation(self):
        """Test URL validation."""
        config = TargetConfig(api_url='https://ghes.example.com/api/v3/')

        assert config.api_url == 'https://ghes.example.com/api/v3'

        with pytest.raises(ValidationError):
            TargetConfig(api_url='ghes.example.com')

    def test_timeout_positive(self):
        with pytest.raises(ValidationError):
            TargetConfig(timeout=0)


class TestSourceConfig:
    """Test source credential validation."""

    def test_bbs_credentials_paired(self):
        with pytest.raises(ValidationError):
            SourceConfig(bbs_username='admin')

        config = SourceConfig(bbs_username='admin', bbs_password='secret')
        assert config.bbs_password == 'secret'


class TestStorageConfig:
    """Test storage configuration."""

    def test_aws_keys_paired(self):
        with pytest.raises(ValidationError):
            StorageConfig(aws_access_key_id='AKIA')

    def test_aws_configured(self):
        assert StorageConfig().aws_configured is False
        assert StorageConfig(
            aws_access_key_id='AKIA', aws_secret_access_key='secret'
        ).aws_configured is True


class TestMigrationConfig:
    """Test migration settings."""

    def test_positive_values(self):
        with pytest.raises(ValidationError):
            MigrationConfig(max_concurrent=0)

    def test_temp_dir_must_be_absolute(self):
        with pytest.raises(ValidationError):
            MigrationConfig(temp_dir='relative/dir')

    def test_temp_dir_created(self, tmp_path):
        """Test a missing temp directory is created."""
        temp_dir = tmp_path / 'staging' / 'archives'

        config = MigrationConfig(temp_dir=str(temp_dir))

        assert config.temp_dir == str(temp_dir)
        assert temp_dir.is_dir()


class TestConfig:
    """Test main configuration class."""

    def test_defaults(self):
        config = Config()

        assert config.migration.max_concurrent == 5
        assert config.logging.level == 'INFO'

    def test_source_token_falls_back_to_target(self):
        config = Config(target={'token': 'target'})

        assert config.source_github_token == 'target'

        config = Config(target={'token': 'target'}, source={'github_token': 'source'})
        assert config.source_github_token == 'source'

    def test_unknown_section_rejected(self):
        with pytest.raises(ValidationError):
            Config(destination={})

    def test_config_from_file(self):
        """Test loading configuration from file."""
        config_data = {
            'target': {'token': 'target-token'},
            'source': {'ado_token': 'ado-token'},
            'migration': {'max_concurrent': 2, 'poll_interval': 30},
            'logging': {'level': 'debug'},
        }

        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            yaml.dump(config_data, f)
            config_path = f.name

        try:
            config = Config.from_file(config_path)

            assert config.target.token == 'target-token'
            assert config.source.ado_token == 'ado-token'
            assert config.migration.max_concurrent == 2
            assert config.migration.poll_interval == 30
            assert config.logging.level == 'DEBUG'
        finally:
            os.unlink(config_path)

    def test_missing_config_file(self):
        """Test handling of missing config file."""
        with pytest.raises(FileNotFoundError):
            Config.from_file('nonexistent_config.yaml')

    def test_invalid_config_file(self, tmp_path):
        config_path = tmp_path / 'config.yaml'
        config_path.write_text('migration:\n  max_concurrent: -1\n')

        with pytest.raises(ValidationError):
            Config.from_file(str(config_path))

    def test_config_from_env(self, clean_env):
        """Test loading configuration from environment variables."""
        clean_env.setenv('GH_PAT', 'target-token')
        clean_env.setenv('GH_SOURCE_PAT', 'source-token')
        clean_env.setenv('ADO_PAT', 'ado-token')
        clean_env.setenv('AZURE_STORAGE_CONNECTION_STRING', 'conn')
        clean_env.setenv('GITHUB_OWNED_STORAGE_MULTIPART_MEBIBYTES', '50')
        clean_env.setenv('MIGRATION_MAX_CONCURRENT', '3')
        clean_env.setenv('LOG_LEVEL', 'warning')

        config = Config.from_env()

        assert config.target.token == 'target-token'
        assert config.target.api_url == 'https://api.github.com'
        assert config.source.github_token == 'source-token'
        assert config.source.ado_token == 'ado-token'
        assert config.storage.azure_connection_string == 'conn'
        assert config.storage.github_multipart_mebibytes == 50
        assert config.migration.max_concurrent == 3
        assert config.logging.level == 'WARNING'

    def test_config_from_empty_env(self, clean_env):
        config = Config.from_env()

        assert config.target.token is None
        assert config.storage.github_multipart_mebibytes == 100

    def test_create_template(self, tmp_path):
        """Test the template is loadable as a configuration."""
        output = tmp_path / 'nested' / 'config.yaml'

        Config.create_template(str(output))

        data = yaml.safe_load(output.read_text())
        assert list(data) == ['target', 'source', 'storage', 'migration', 'logging']
        config = Config(**data)
        assert config.source.bbs_username == 'your-bitbucket-username'

    def test_to_file_round_trip(self, tmp_path):
        output = tmp_path / 'saved.yaml'
        config = Config(target={'token': 'abc'}, migration={'max_concurrent': 7})

        config.to_file(str(output))

        assert Config.from_file(str(output)).migration.max_concurrent == 7
