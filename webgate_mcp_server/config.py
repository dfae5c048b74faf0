"""
Configuration management for Webgate MCP Server.

Handles loading, validation, and access to configuration settings
from environment variables, a ``.env`` file and optional config files.

Priority: Env Vars > .env > Specific Config File > Default Config Files > Defaults

The top-level settings use the plain environment names operators already know
(``API_TOKEN``, ``PRO_MODE``, ``WEB_UNLOCKER_ZONE``, ``BROWSER_ZONE``,
``RATE_LIMIT``). Nested sections use ``__`` as a delimiter, e.g.
``BROWSER__MAX_CONNECT_ATTEMPTS=5``.
"""
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from webgate_mcp_server.constants import (
    DEFAULT_API_BASE_URL,
    DEFAULT_BROWSER_ZONE,
    DEFAULT_CDP_HOST,
    DEFAULT_CDP_PORT,
    DEFAULT_POLL_TIMEOUT,
    DEFAULT_UNLOCKER_ZONE,
)
from webgate_mcp_server.core.rate_limit import RateLimitSpec, parse_rate_limit
from webgate_mcp_server.exceptions import ConfigurationError

# Default configuration file paths
DEFAULT_CONFIG_PATHS = [
    "./webgate_config.yaml",
    "./webgate_config.yml",
    "./webgate_config.json",
    "~/.config/webgate/config.yaml",
]

# Global configuration instance
_config = None

# Basic logger for config loading issues before full logging is set up
config_logger = logging.getLogger("webgate_mcp_server.config")
handler = logging.StreamHandler(sys.stderr)  # stdout carries the stdio transport
if not config_logger.hasHandlers():
    config_logger.addHandler(handler)
    config_logger.setLevel(logging.INFO)


class ServerConfig(BaseModel):
    """Server configuration settings."""
    name: str = Field("Webgate MCP Server", description="Name of the server")
    host: str = Field("127.0.0.1", description="Host to bind network transports to")
    port: int = Field(8013, description="Port to bind network transports to")
    transport: str = Field("stdio", description="MCP transport (stdio, sse, streamable-http)")
    log_level: str = Field("info", description="Logging level (debug, info, warning, error, critical)")

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        allowed = ['debug', 'info', 'warning', 'error', 'critical']
        level_lower = v.lower()
        if level_lower not in allowed:
            raise ValueError(f"Log level must be one of {allowed}")
        return level_lower

    @field_validator('transport')
    @classmethod
    def validate_transport(cls, v):
        """Validate transport name."""
        allowed = ['stdio', 'sse', 'streamable-http']
        if v not in allowed:
            raise ValueError(f"Transport must be one of {allowed}")
        return v


class BrowserConfig(BaseModel):
    """Remote browser connection settings."""
    cdp_host: str = Field(DEFAULT_CDP_HOST, description="Remote browser host")
    cdp_port: int = Field(DEFAULT_CDP_PORT, description="Remote browser CDP port")
    cdp_endpoint: Optional[str] = Field(None, description="Explicit CDP endpoint, bypasses zone credential lookup")
    country: Optional[str] = Field(None, description="Two-letter country code for browser exit nodes")
    navigation_timeout: float = Field(120.0, description="Page navigation timeout in seconds")
    max_connect_attempts: int = Field(3, ge=1, description="Connection attempts before a session fails")
    reconnect_backoff: float = Field(0.5, ge=0, description="Initial backoff between attempts in seconds")
    idle_timeout: float = Field(0.0, ge=0, description="Close sessions idle this long (0 disables)")
    max_name_length: int = Field(100, ge=8, description="Snapshot element name truncation length")


class ApiConfig(BaseModel):
    """Unblocking and collection API settings."""
    base_url: str = Field(DEFAULT_API_BASE_URL, description="API base URL")
    request_timeout: float = Field(180.0, description="Timeout for a single API request in seconds")
    poll_timeout: float = Field(DEFAULT_POLL_TIMEOUT, description="Ceiling for dataset snapshot polling in seconds")
    poll_interval: float = Field(1.0, gt=0, description="Delay between snapshot polls in seconds")


class LoggingConfig(BaseModel):
    """Logging settings."""
    level: str = Field("INFO", description="Log level for server loggers")
    file: Optional[str] = Field(None, description="Optional log file path")
    emoji_enabled: bool = Field(True, description="Prefix log messages with emoji")
    show_timestamps: bool = Field(True, description="Show timestamps on the console")


class ToolRegistrationConfig(BaseModel):
    """Additional filtering applied after the mode filter."""
    included_tools: List[str] = Field(default_factory=list, description="Register only these tools when non-empty")
    excluded_tools: List[str] = Field(default_factory=list, description="Never register these tools")


class GatewayConfig(BaseSettings):
    """Main Webgate configuration model."""
    model_config = SettingsConfigDict(
        env_nested_delimiter='__',  # For nested env vars like BROWSER__CDP_PORT
        extra='ignore',
        env_file='.env',
        env_file_encoding='utf-8',
    )

    api_token: Optional[str] = Field(None, description="API token for the unblocking service (required)")
    pro_mode: bool = Field(False, description="Register the expanded tool set")
    web_unlocker_zone: str = Field(DEFAULT_UNLOCKER_ZONE, description="Zone used for unblocked requests")
    browser_zone: str = Field(DEFAULT_BROWSER_ZONE, description="Zone used for the remote browser")
    rate_limit: Optional[str] = Field(None, description="Tool call quota, e.g. '100/1h'")

    server: ServerConfig = Field(default_factory=ServerConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    tool_registration: ToolRegistrationConfig = Field(default_factory=ToolRegistrationConfig)

    @field_validator('rate_limit')
    @classmethod
    def validate_rate_limit(cls, v):
        """Reject malformed rate-limit strings at load time."""
        if v is None or not v.strip():
            return None
        parse_rate_limit(v)
        return v.strip()

    @property
    def rate_limit_spec(self) -> Optional[RateLimitSpec]:
        """Parsed rate limit, or None when calls are unlimited."""
        return parse_rate_limit(self.rate_limit) if self.rate_limit else None


def expand_path(path: str) -> str:
    """Expand user and variables in path."""
    expanded = os.path.expanduser(path)
    expanded = os.path.expandvars(expanded)
    return os.path.abspath(expanded)


def find_config_file() -> Optional[str]:
    """Find the first available configuration file from default paths."""
    for path in DEFAULT_CONFIG_PATHS:
        expanded_path = expand_path(path)
        if os.path.isfile(expanded_path):
            config_logger.debug(f"Found config file: {expanded_path}")
            return expanded_path
    config_logger.debug("No default config file found in standard locations.")
    return None


def load_config_from_file(path: str) -> Dict[str, Any]:
    """Load configuration from a file (YAML or JSON)."""
    path = expand_path(path)
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Configuration file not found: {path}")

    config_logger.debug(f"Loading configuration from file: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.endswith(('.yaml', '.yml')):
                config_data = yaml.safe_load(f)
            elif path.endswith('.json'):
                config_data = json.load(f)
            else:
                raise ValueError(f"Unsupported configuration file format: {path}. Use .yaml or .json.")
            return config_data if config_data is not None else {}
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValueError(f"Invalid format in configuration file {path}: {e}") from e


def load_config(
    config_file_path: Optional[str] = None,
    load_default_files: bool = True,
    require_token: bool = True,
    **overrides: Any,
) -> GatewayConfig:
    """Load configuration from defaults, file, and environment variables.

    Unlike a missing optional setting, a missing API token or a malformed
    rate-limit string is fatal: both raise ``ConfigurationError`` so the
    process stops before serving any tool call.

    Args:
        config_file_path: Explicit path to a config file.
        load_default_files: Whether to search for default config files.
        require_token: Whether a missing API token is an error.
        **overrides: Field values that take precedence over every other source.

    Returns:
        Validated GatewayConfig object.
    """
    global _config

    file_config_data: Dict[str, Any] = {}

    chosen_file_path = None
    if config_file_path:
        chosen_file_path = expand_path(config_file_path)
        if not os.path.isfile(chosen_file_path):
            raise ConfigurationError(f"Specified configuration file not found: {config_file_path}")
    elif load_default_files:
        chosen_file_path = find_config_file()

    if chosen_file_path:
        try:
            file_config_data = load_config_from_file(chosen_file_path)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    try:
        # Init kwargs rank above env vars in pydantic-settings, so only explicit
        # overrides are passed that way; file values become defaults underneath.
        loaded_config = _build_config(file_config_data, overrides)
    except ValidationError as e:
        config_logger.error("Configuration validation failed. Details below:")
        config_logger.error(str(e))
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    if require_token and not loaded_config.api_token:
        raise ConfigurationError(
            "API_TOKEN is required. Set it in the environment or in the .env file."
        )

    if loaded_config.logging.file:
        loaded_config.logging.file = expand_path(loaded_config.logging.file)

    _config = loaded_config
    config_logger.info("Configuration loaded successfully.")
    return _config


def _build_config(file_data: Dict[str, Any], overrides: Dict[str, Any]) -> GatewayConfig:
    """Layer file data under environment values and overrides above them."""
    env_config = GatewayConfig(**overrides)
    if not file_data:
        return env_config
    explicit = env_config.model_dump(exclude_unset=True)
    merged = merge_configs(dict(file_data), explicit)
    return GatewayConfig(**merged)


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override dict into base dict."""
    for key, value in override.items():
        if isinstance(value, dict) and key in base and isinstance(base[key], dict):
            merge_configs(base[key], value)
        else:
            base[key] = value
    return base


def get_config() -> GatewayConfig:
    """Get the globally loaded configuration.

    Loads the configuration if it hasn't been loaded yet.

    Returns:
        The GatewayConfig instance.
    """
    global _config
    if _config is None:
        config_logger.info("Configuration not yet loaded. Loading now...")
        load_config()
    return _config


def set_config(config: Optional[GatewayConfig]) -> None:
    """Replace the global configuration (used by the CLI and tests)."""
    global _config
    _config = config
