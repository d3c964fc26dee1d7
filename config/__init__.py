from .config_loader import Config, ConfigError, config, validate_credentials

__all__ = ['Config', 'ConfigError', 'config', 'validate_credentials']
