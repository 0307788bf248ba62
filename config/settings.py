"""Application configuration settings.

This module centralizes all configuration values loaded from:
1. config.base.yaml (shared defaults)
2. config.{env}.yaml (environment-specific: dev, staging, prod)
3. config.local.yaml (local overrides, git-ignored)
4. Environment variables (highest priority)

Default environment is 'development' (DEV).

Usage:
    from config.settings import config

    mongo_uri = config.MONGO_URI
    limit = config.HISTORY_DEFAULT_LIMIT
"""
import os
from pathlib import Path
from typing import Optional, Any, Dict, List
import yaml


# Environment name mappings
ENV_ALIASES = {
    'dev': 'development',
    'development': 'development',
    'staging': 'staging',
    'stage': 'staging',
    'prod': 'production',
    'production': 'production',
}

# Default environment
DEFAULT_ENV = 'development'


def _env_flag(name: str) -> Optional[bool]:
    """Read a boolean environment variable, None when unset."""
    env_val = os.getenv(name, '').lower()
    if not env_val:
        return None
    return env_val in ('1', 'true', 'yes')


class Config:
    """Centralized application configuration.

    Priority (highest to lowest):
    1. Environment variables
    2. config.local.yaml (for local development overrides)
    3. config.{env}.yaml (environment-specific: dev, staging, prod)
    4. config.base.yaml (shared defaults)

    Environment is determined by FLASK_ENV, then APP_ENV, then 'development'.
    """

    _config_data: Dict[str, Any] = {}
    _loaded: bool = False
    _current_env: str = DEFAULT_ENV

    def __init__(self):
        if not Config._loaded:
            self._load_config()

    @classmethod
    def _get_environment(cls) -> str:
        """Determine current environment from env vars or default to dev."""
        env = os.getenv('FLASK_ENV') or os.getenv('APP_ENV') or DEFAULT_ENV
        env = env.lower().strip()
        return ENV_ALIASES.get(env, DEFAULT_ENV)

    def _load_config(self):
        """Load configuration from YAML files based on environment."""
        config_dir = Path(__file__).parent
        Config._current_env = self._get_environment()

        Config._config_data = {}

        # 1. Load base config (shared defaults)
        base_config_path = config_dir / 'config.base.yaml'
        if base_config_path.exists():
            with open(base_config_path, 'r') as f:
                Config._config_data = yaml.safe_load(f) or {}

        # 2. Load environment-specific config
        env_config_map = {
            'development': 'config.dev.yaml',
            'staging': 'config.staging.yaml',
            'production': 'config.prod.yaml',
        }
        env_config_file = env_config_map.get(Config._current_env, 'config.dev.yaml')
        env_config_path = config_dir / env_config_file

        if env_config_path.exists():
            with open(env_config_path, 'r') as f:
                env_data = yaml.safe_load(f) or {}
                Config._config_data = self._deep_merge(Config._config_data, env_data)

        # 3. Load local overrides (not in git)
        local_config_path = config_dir / 'config.local.yaml'
        if local_config_path.exists():
            with open(local_config_path, 'r') as f:
                local_data = yaml.safe_load(f) or {}
                Config._config_data = self._deep_merge(Config._config_data, local_data)

        Config._loaded = True

    def _deep_merge(self, base: dict, override: dict) -> dict:
        """Deep merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def _get_yaml_value(self, *keys, default=None) -> Any:
        """Get a nested value from YAML config."""
        value = Config._config_data
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return default
            if value is None:
                return default
        return value

    @classmethod
    def reload(cls):
        """Reload configuration (useful for testing)."""
        cls._loaded = False
        cls._config_data = {}
        instance = cls()
        return instance

    # ==========================================================================
    # Environment Info
    # ==========================================================================

    @property
    def CURRENT_ENV(self) -> str:
        """Current environment name."""
        return Config._current_env

    @property
    def IS_DEV(self) -> bool:
        return Config._current_env == 'development'

    @property
    def IS_STAGING(self) -> bool:
        return Config._current_env == 'staging'

    @property
    def IS_PROD(self) -> bool:
        return Config._current_env == 'production'

    # ==========================================================================
    # Application Settings
    # ==========================================================================

    @property
    def DEBUG(self) -> bool:
        """Flask debug mode."""
        flag = _env_flag('FLASK_DEBUG')
        if flag is not None:
            return flag
        return self._get_yaml_value('app', 'debug', default=False)

    @property
    def ENV(self) -> str:
        """Application environment (development, staging, production)."""
        return Config._current_env

    @property
    def PORT(self) -> int:
        """Server port."""
        env_val = os.getenv('PORT')
        if env_val:
            return int(env_val)
        return self._get_yaml_value('app', 'port', default=2006)

    @property
    def APP_NAME(self) -> str:
        return os.getenv('APP_NAME') or self._get_yaml_value('app', 'name', default='Support Relay')

    @property
    def APP_VERSION(self) -> str:
        return self._get_yaml_value('app', 'version', default='1.0.0')

    # ==========================================================================
    # Database Settings
    # ==========================================================================

    @property
    def MONGO_URI(self) -> str:
        """MongoDB connection URI."""
        return os.getenv('MONGO_URI') or self._get_yaml_value('database', 'mongo_uri', default='mongodb://localhost:27017')

    @property
    def CHAT_DB_NAME(self) -> str:
        """Database holding chat messages and presence records."""
        return os.getenv('CHAT_DB_NAME') or self._get_yaml_value('database', 'databases', 'chat', default='chat_db')

    @property
    def MONGO_SERVER_SELECTION_TIMEOUT_MS(self) -> int:
        """How long a Mongo call waits for a server before failing."""
        env_val = os.getenv('MONGO_SERVER_SELECTION_TIMEOUT_MS')
        if env_val:
            return int(env_val)
        return self._get_yaml_value('database', 'server_selection_timeout_ms', default=5000)

    @property
    def MONGO_CONNECT_RETRY_SECONDS(self) -> float:
        """Initial delay between startup connection attempts (doubles each try)."""
        env_val = os.getenv('MONGO_CONNECT_RETRY_SECONDS')
        if env_val:
            return float(env_val)
        return self._get_yaml_value('database', 'connect_retry_seconds', default=2.0)

    @property
    def MONGO_CONNECT_MAX_ATTEMPTS(self) -> int:
        """Startup connection attempts before giving up (0 = forever)."""
        env_val = os.getenv('MONGO_CONNECT_MAX_ATTEMPTS')
        if env_val:
            return int(env_val)
        return self._get_yaml_value('database', 'connect_max_attempts', default=0)

    # ==========================================================================
    # CORS Settings
    # ==========================================================================

    @property
    def CORS_ORIGINS(self) -> str:
        """Allowed CORS origins."""
        return os.getenv('CORS_ORIGINS') or self._get_yaml_value('cors', 'origins', default='*')

    @property
    def CORS_ORIGINS_LIST(self) -> list:
        origins = self.CORS_ORIGINS
        if origins == '*':
            return ['*']
        return [o.strip() for o in origins.split(',') if o.strip()]

    # ==========================================================================
    # Object Storage (Cloudinary) Settings
    # ==========================================================================

    @property
    def CLOUDINARY_CLOUD_NAME(self) -> Optional[str]:
        return os.getenv('CLOUDINARY_CLOUD_NAME') or self._get_yaml_value('storage', 'cloudinary', 'cloud_name')

    @property
    def CLOUDINARY_API_KEY(self) -> Optional[str]:
        return os.getenv('CLOUDINARY_API_KEY') or self._get_yaml_value('storage', 'cloudinary', 'api_key')

    @property
    def CLOUDINARY_API_SECRET(self) -> Optional[str]:
        return os.getenv('CLOUDINARY_API_SECRET') or self._get_yaml_value('storage', 'cloudinary', 'api_secret')

    @property
    def UPLOAD_FOLDER(self) -> str:
        """Folder hint passed to the object store."""
        return os.getenv('UPLOAD_FOLDER') or self._get_yaml_value('storage', 'folder', default='chat_files')

    @property
    def UPLOAD_MAX_BYTES(self) -> int:
        """Maximum attachment size in bytes."""
        env_val = os.getenv('UPLOAD_MAX_BYTES')
        if env_val:
            return int(env_val)
        return self._get_yaml_value('upload', 'max_file_size_bytes', default=10 * 1024 * 1024)

    @property
    def UPLOAD_ALLOWED_EXTENSIONS(self) -> List[str]:
        """Allowed attachment extensions."""
        return self._get_yaml_value(
            'upload', 'allowed_extensions',
            default=['jpeg', 'jpg', 'png', 'gif', 'pdf', 'doc', 'docx', 'mp4', 'mov', 'avi'],
        )

    # ==========================================================================
    # Chat Settings
    # ==========================================================================

    @property
    def HISTORY_DEFAULT_LIMIT(self) -> int:
        """Messages returned by a history fetch when no limit is given."""
        env_val = os.getenv('HISTORY_DEFAULT_LIMIT')
        if env_val:
            return int(env_val)
        return self._get_yaml_value('chat', 'history_default_limit', default=50)

    @property
    def HISTORY_MAX_LIMIT(self) -> int:
        """Upper bound on a single history fetch."""
        env_val = os.getenv('HISTORY_MAX_LIMIT')
        if env_val:
            return int(env_val)
        return self._get_yaml_value('chat', 'history_max_limit', default=200)

    # ==========================================================================
    # Logging Settings
    # ==========================================================================

    @property
    def LOG_LEVEL(self) -> str:
        """Logging level."""
        env_val = os.getenv('LOG_LEVEL')
        if env_val:
            return env_val.upper()
        if self.LOG_DEBUG:
            return 'DEBUG'
        return self._get_yaml_value('logging', 'level', default='INFO')

    @property
    def LOG_DEBUG(self) -> bool:
        """Enable debug logging (verbose)."""
        flag = _env_flag('LOG_DEBUG')
        if flag is not None:
            return flag
        return self._get_yaml_value('logging', 'debug', default=False)

    @property
    def LOG_PATTERN(self) -> str:
        """Log format pattern."""
        env_val = os.getenv('LOG_PATTERN')
        if env_val:
            return env_val
        return self._get_yaml_value('logging', 'pattern', default='%(message)s')

    @property
    def LOG_INCLUDE_DATETIME(self) -> bool:
        flag = _env_flag('LOG_INCLUDE_DATETIME')
        if flag is not None:
            return flag
        return self._get_yaml_value('logging', 'include_datetime', default=True)

    @property
    def LOG_INCLUDE_NAME(self) -> bool:
        flag = _env_flag('LOG_INCLUDE_NAME')
        if flag is not None:
            return flag
        return self._get_yaml_value('logging', 'include_name', default=True)

    @property
    def LOG_INCLUDE_LEVEL(self) -> bool:
        flag = _env_flag('LOG_INCLUDE_LEVEL')
        if flag is not None:
            return flag
        return self._get_yaml_value('logging', 'include_level', default=True)

    @property
    def LOG_DATE_FORMAT(self) -> str:
        return self._get_yaml_value('logging', 'date_format', default='%H:%M:%S')

    @property
    def LOG_FORMAT(self) -> str:
        """Build log format string based on config options."""
        pattern = self.LOG_PATTERN
        if pattern and pattern != '%(message)s':
            return pattern

        parts = []
        if self.LOG_INCLUDE_DATETIME:
            parts.append('%(asctime)s')
        if self.LOG_INCLUDE_NAME:
            parts.append('%(name)s')
        if self.LOG_INCLUDE_LEVEL:
            parts.append('%(levelname)s')
        parts.append('%(message)s')

        return ' - '.join(parts) if len(parts) > 1 else parts[0]

    # ==========================================================================
    # Validation Methods
    # ==========================================================================

    def validate_required(self) -> None:
        """Validate that required configuration values are set.

        Raises RuntimeError if required values are missing in production.
        """
        errors = []

        if self.IS_PROD:
            if not self.MONGO_URI or self.MONGO_URI == 'mongodb://localhost:27017':
                errors.append('MONGO_URI should be set to production database in production')
            if not (self.CLOUDINARY_CLOUD_NAME and self.CLOUDINARY_API_KEY and self.CLOUDINARY_API_SECRET):
                errors.append('CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET are required in production')
            if self.CORS_ORIGINS == '*':
                errors.append('CORS_ORIGINS should not be "*" in production')

        if errors:
            raise RuntimeError('Configuration errors:\n' + '\n'.join(f'  - {e}' for e in errors))

    def to_dict(self) -> Dict[str, Any]:
        """Export current configuration as dictionary (for debugging)."""
        return {
            'environment': {
                'current': self.CURRENT_ENV,
                'is_dev': self.IS_DEV,
                'is_staging': self.IS_STAGING,
                'is_prod': self.IS_PROD,
            },
            'app': {
                'debug': self.DEBUG,
                'port': self.PORT,
                'name': self.APP_NAME,
                'version': self.APP_VERSION,
            },
            'database': {
                'mongo_uri': '***' if self.MONGO_URI else None,
                'chat_db': self.CHAT_DB_NAME,
                'server_selection_timeout_ms': self.MONGO_SERVER_SELECTION_TIMEOUT_MS,
            },
            'cors': {
                'origins': self.CORS_ORIGINS,
            },
            'storage': {
                'cloud_name': self.CLOUDINARY_CLOUD_NAME,
                'api_key_set': bool(self.CLOUDINARY_API_KEY),
                'api_secret_set': bool(self.CLOUDINARY_API_SECRET),
                'folder': self.UPLOAD_FOLDER,
            },
            'upload': {
                'max_file_size_bytes': self.UPLOAD_MAX_BYTES,
                'allowed_extensions': self.UPLOAD_ALLOWED_EXTENSIONS,
            },
            'chat': {
                'history_default_limit': self.HISTORY_DEFAULT_LIMIT,
                'history_max_limit': self.HISTORY_MAX_LIMIT,
            },
            'logging': {
                'level': self.LOG_LEVEL,
            },
        }


# Singleton config instance
config = Config()


# =============================================================================
# Convenience exports
# =============================================================================

def get_env() -> str:
    return config.ENV

def is_dev() -> bool:
    return config.IS_DEV

def is_prod() -> bool:
    return config.IS_PROD
