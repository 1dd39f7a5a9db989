"""Configuration management for the repository migration tool."""

from typing import Optional, Dict, Any
from pathlib import Path
import os

from pydantic import BaseModel, Field, field_validator, model_validator
import yaml
from dotenv import load_dotenv

from ..api.ado_client import ADO_SERVER_URL
from ..api.client import DEFAULT_TIMEOUT
from ..api.github_client import GITHUB_API_URL
from ..storage.github import DEFAULT_MULTIPART_MEBIBYTES, GITHUB_UPLOADS_URL


def _validate_url(v: Optional[str]) -> Optional[str]:
    if v is not None:
        if not v.startswith(('http://', 'https://')):
            raise ValueError('URL must start with http:// or https://')
        return v.rstrip('/')
    return v


class TargetConfig(BaseModel):
    """Configuration of the target GitHub instance."""

    token: Optional[str] = Field(default=None, description='Target personal access token')
    api_url: str = Field(default=GITHUB_API_URL, description='GitHub API URL')
    uploads_url: str = Field(
        default=GITHUB_UPLOADS_URL, description='GitHub uploads URL for owned storage'
    )
    timeout: int = Field(default=DEFAULT_TIMEOUT, description='Request timeout in seconds')

    @field_validator('api_url', 'uploads_url')
    @classmethod
    def validate_url(cls, v):
        """Validate URL format."""
        return _validate_url(v)

    @field_validator('timeout')
    @classmethod
    def validate_timeout(cls, v):
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError('Timeout must be positive')
        return v


class SourceConfig(BaseModel):
    """Credentials for the source platforms."""

    github_token: Optional[str] = Field(
        default=None, description='Source GitHub personal access token'
    )
    ado_token: Optional[str] = Field(default=None, description='Azure DevOps PAT')
    ado_server_url: str = Field(default=ADO_SERVER_URL, description='Azure DevOps URL')
    bbs_username: Optional[str] = Field(default=None, description='Bitbucket username')
    bbs_password: Optional[str] = Field(default=None, description='Bitbucket password')
    verify_ssl: bool = Field(
        default=True, description='Verify TLS certificates of GHES and Bitbucket Server'
    )
    timeout: int = Field(default=DEFAULT_TIMEOUT, description='Request timeout in seconds')

    @field_validator('ado_server_url')
    @classmethod
    def validate_url(cls, v):
        """Validate URL format."""
        return _validate_url(v)

    @model_validator(mode='after')
    def validate_bbs_credentials(self):
        """Bitbucket credentials come as a pair."""
        if bool(self.bbs_username) != bool(self.bbs_password):
            raise ValueError('bbs_username and bbs_password must be provided together')
        return self


class StorageConfig(BaseModel):
    """Blob storage backends archives can be staged in."""

    azure_connection_string: Optional[str] = Field(
        default=None, description='Azure Storage connection string'
    )
    aws_access_key_id: Optional[str] = Field(default=None, description='AWS access key id')
    aws_secret_access_key: Optional[str] = Field(
        default=None, description='AWS secret access key'
    )
    aws_session_token: Optional[str] = Field(default=None, description='AWS session token')
    aws_region: Optional[str] = Field(default=None, description='AWS region')
    github_multipart_mebibytes: int = Field(
        default=DEFAULT_MULTIPART_MEBIBYTES,
        description='Part size for GitHub-owned storage uploads in MiB',
    )

    @model_validator(mode='after')
    def validate_aws_credentials(self):
        """AWS keys come as a pair."""
        if bool(self.aws_access_key_id) != bool(self.aws_secret_access_key):
            raise ValueError(
                'aws_access_key_id and aws_secret_access_key must be provided together'
            )
        return self

    @property
    def aws_configured(self) -> bool:
        return bool(self.aws_access_key_id and self.aws_secret_access_key)


class MigrationConfig(BaseModel):
    """Migration-specific configuration."""

    max_concurrent: int = Field(default=5, description='Repositories migrated at once')
    poll_interval: int = Field(default=10, description='Seconds between migration polls')
    ado_poll_interval: int = Field(
        default=60, description='Seconds between polls of Azure DevOps migrations'
    )
    archive_poll_interval: int = Field(
        default=10, description='Seconds between archive generation polls'
    )
    max_poll_attempts: int = Field(default=7200, description='Polls before timing out')

    retry_max_attempts: int = Field(default=5, description='Attempts per remote call')
    retry_interval: float = Field(default=4.0, description='Base retry delay in seconds')
    http_retry_interval: float = Field(
        default=1.0, description='Base HTTP retry delay in seconds'
    )

    temp_dir: Optional[str] = Field(
        default=None,
        description='Directory for downloaded archives. If not specified, uses system temp directory.',
    )

    @field_validator(
        'max_concurrent',
        'poll_interval',
        'ado_poll_interval',
        'archive_poll_interval',
        'max_poll_attempts',
        'retry_max_attempts',
    )
    @classmethod
    def validate_positive(cls, v):
        """Validate counts and intervals are positive."""
        if v <= 0:
            raise ValueError('Value must be positive')
        return v

    @field_validator('temp_dir')
    @classmethod
    def validate_temp_dir(cls, v):
        """Validate temp directory path."""
        if v is not None:
            temp_path = Path(v)
            if not temp_path.is_absolute():
                raise ValueError('temp_dir must be an absolute path')
            temp_path.mkdir(parents=True, exist_ok=True)
            if not temp_path.is_dir():
                raise ValueError(f'temp_dir path is not a directory: {v}')
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default='INFO', description='Log level')
    file: Optional[str] = Field(default=None, description='Log file path')
    format: str = Field(
        default='{time:YYYY-MM-DD HH:mm:ss} | {level} | {name} | {message}',
        description='Log format',
    )

    @field_validator('level')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()


class Config(BaseModel):
    """Main configuration class for the repository migration tool."""

    model_config = {'extra': 'forbid'}

    target: TargetConfig = Field(
        default_factory=TargetConfig, description='Target GitHub instance'
    )
    source: SourceConfig = Field(
        default_factory=SourceConfig, description='Source platform credentials'
    )
    storage: StorageConfig = Field(
        default_factory=StorageConfig, description='Archive storage backends'
    )
    migration: MigrationConfig = Field(
        default_factory=MigrationConfig, description='Migration settings'
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description='Logging settings'
    )

    @property
    def source_github_token(self) -> Optional[str]:
        """Source PAT, falling back to the target PAT like for same-instance migrations."""
        return self.source.github_token or self.target.token

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """Load configuration from YAML file."""
        config_file = Path(config_path)

        if not config_file.exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        # Load .env file if it exists
        load_dotenv()

        multipart = os.getenv('GITHUB_OWNED_STORAGE_MULTIPART_MEBIBYTES')

        config_data = {
            'target': {
                'token': os.getenv('GH_PAT'),
                'api_url': os.getenv('GH_API_URL'),
            },
            'source': {
                'github_token': os.getenv('GH_SOURCE_PAT'),
                'ado_token': os.getenv('ADO_PAT'),
                'ado_server_url': os.getenv('ADO_SERVER_URL'),
                'bbs_username': os.getenv('BBS_USERNAME'),
                'bbs_password': os.getenv('BBS_PASSWORD'),
            },
            'storage': {
                'azure_connection_string': os.getenv('AZURE_STORAGE_CONNECTION_STRING'),
                'aws_access_key_id': os.getenv('AWS_ACCESS_KEY_ID'),
                'aws_secret_access_key': os.getenv('AWS_SECRET_ACCESS_KEY'),
                'aws_session_token': os.getenv('AWS_SESSION_TOKEN'),
                'aws_region': os.getenv('AWS_REGION'),
                'github_multipart_mebibytes': int(multipart) if multipart else None,
            },
            'migration': {
                'max_concurrent': int(os.getenv('MIGRATION_MAX_CONCURRENT', 5)),
                'temp_dir': os.getenv('MIGRATION_TEMP_DIR'),
            },
            'logging': {
                'level': os.getenv('LOG_LEVEL', 'INFO'),
                'file': os.getenv('LOG_FILE'),
            },
        }

        # Remove None values
        config_data = cls._remove_none_values(config_data)

        return cls(**config_data)

    @staticmethod
    def _remove_none_values(data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively remove None values from dictionary."""
        if isinstance(data, dict):
            return {
                k: Config._remove_none_values(v)
                for k, v in data.items()
                if v is not None
            }
        return data

    def to_file(self, config_path: str) -> None:
        """Save configuration to YAML file."""
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                self.model_dump(), f, default_flow_style=False, indent=2, sort_keys=False
            )

    @staticmethod
    def create_template(output_path: str) -> None:
        """Create a configuration template file."""
        template_config = {
            'target': {
                'token': 'your-target-personal-access-token',
                'api_url': GITHUB_API_URL,
                'uploads_url': GITHUB_UPLOADS_URL,
            },
            'source': {
                'github_token': 'your-source-personal-access-token',
                'ado_token': 'your-azure-devops-pat',
                'ado_server_url': ADO_SERVER_URL,
                'bbs_username': 'your-bitbucket-username',
                'bbs_password': 'your-bitbucket-password',
                'verify_ssl': True,
            },
            'storage': {
                'azure_connection_string': 'your-azure-storage-connection-string',
                'aws_access_key_id': 'your-aws-access-key-id',
                'aws_secret_access_key': 'your-aws-secret-access-key',
                'aws_region': 'us-east-1',
                'github_multipart_mebibytes': DEFAULT_MULTIPART_MEBIBYTES,
            },
            'migration': {
                'max_concurrent': 5,
                'poll_interval': 10,
                'ado_poll_interval': 60,
                'archive_poll_interval': 10,
                'max_poll_attempts': 7200,
                'temp_dir': '/tmp/repo-migrate',
            },
            'logging': {
                'level': 'INFO',
                'file': 'migration.log',
                'format': '{time:YYYY-MM-DD HH:mm:ss} | {level} | {name} | {message}',
            },
        }

        config_file = Path(output_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                template_config, f, default_flow_style=False, indent=2, sort_keys=False
            )
