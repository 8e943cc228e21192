#!/usr/bin/env python3
"""
Configuration management for the Miniflux summarizer.

This module centralizes logging setup and configuration loading. Settings come
from environment variables, an optional .env file next to this module and an
optional YAML secrets file (SECRETS_FILE). Each trigger builds one immutable
`Config` snapshot with `load_config()` and passes it down explicitly; there is
no module-level configuration instance.
"""

from dataclasses import dataclass, field
from os import environ, path, access, R_OK
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Tuple
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv

from errors import ConfigurationError

LOGGER_NAMESPACE = "MinifluxSummarizer"

_LEVEL_MAP = {
    "DEBUG": DEBUG,
    "INFO": INFO,
    "WARNING": WARNING,
    "ERROR": ERROR,
}


def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true
        THIRD_PARTY_LOG_LEVEL: Level for openai/httpx/aiohttp loggers - defaults to WARNING

    The logger outputs to stdout with line buffering for real-time logging.
    All modules should use get_logger() to create module-specific loggers that inherit this configuration.
    """
    environ["PYTHONUNBUFFERED"] = "1"

    level = _LEVEL_MAP.get(environ.get("LOG_LEVEL", "INFO").upper(), INFO)
    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"

    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True  # Force reconfiguration if already configured
    )

    # pytest capture replaces stdout with objects lacking reconfigure()
    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(line_buffering=True)
    if hasattr(sys.stderr, "reconfigure"):
        sys.stderr.reconfigure(line_buffering=True)

    # Keep HTTP client libraries quiet unless explicitly overridden
    third_party_level = _LEVEL_MAP.get(environ.get("THIRD_PARTY_LOG_LEVEL", "WARNING").upper(), WARNING)
    for name in ("openai", "httpx", "httpcore", "aiohttp.access"):
        getLogger(name).setLevel(third_party_level)

    return getLogger(LOGGER_NAMESPACE)


def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Args:
        name: The logger name (e.g., "summarizer", "webhook", "scheduler")

    Returns:
        A logger named "MinifluxSummarizer.{name}"
    """
    return getLogger(f"{LOGGER_NAMESPACE}.{name}")


logger = _setup_global_logger()

BASE_DIR = path.dirname(path.abspath(__file__))
SECRETS_FILE_SIZE_LIMIT = 2 * 1024 * 1024


def _mask_secret(value: Optional[str], show: int = 4) -> str:
    """Mask a secret value for safe logging (keep only first/last few chars)."""
    if not value:
        return "<missing>"
    v = str(value)
    if len(v) <= show * 2:
        return "*" * len(v)
    return f"{v[:show]}***{v[-show:]}"


def parse_whitelist(raw: Optional[str]) -> frozenset:
    """Split a comma-separated list of site origins into a set."""
    if not raw:
        return frozenset()
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


def parse_schedule_times(raw: Optional[str]) -> Tuple[str, ...]:
    """Split a comma-separated list of HH:MM times; validation happens in the scheduler."""
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class MinifluxSettings:
    url: str
    username: str
    password: str


@dataclass(frozen=True)
class OpenAISettings:
    url: str
    token: str
    model: str


@dataclass(frozen=True)
class Config:
    """Read-only configuration snapshot shared by every task of one invocation."""

    miniflux: MinifluxSettings
    openai: OpenAISettings
    whitelist: frozenset = field(default_factory=frozenset)
    webhook_secret: Optional[str] = None
    http_timeout: int = 30
    summarizer_http_timeout: int = 60
    webhook_host: str = "0.0.0.0"
    webhook_port: int = 8080
    webhook_max_entries: int = 0
    poll_interval_minutes: int = 30
    schedule_times: Tuple[str, ...] = ()
    scheduler_timezone: str = "UTC"
    scheduler_run_immediately: bool = False
    prompt_path: str = path.join(BASE_DIR, "prompt.yaml")

    def missing_values(self, require_webhook: bool = False) -> List[str]:
        """List the names of required settings that are empty."""
        required = {
            "MINIFLUX_URL": self.miniflux.url,
            "MINIFLUX_USERNAME": self.miniflux.username,
            "MINIFLUX_PASSWORD": self.miniflux.password,
            "OPENAI_URL": self.openai.url,
            "OPENAI_TOKEN": self.openai.token,
            "OPENAI_MODEL": self.openai.model,
        }
        if require_webhook:
            required["MINIFLUX_WEBHOOK_SECRET"] = self.webhook_secret
        return [name for name, value in required.items() if not (value and str(value).strip())]

    def validate(self, require_webhook: bool = False) -> "Config":
        """Raise ConfigurationError listing every missing required value."""
        missing = self.missing_values(require_webhook=require_webhook)
        if missing:
            for name in missing:
                logger.error(f"{name} environment variable not set")
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                details={"missing": missing},
            )
        if not self.whitelist:
            logger.warning("WHITELIST_URL is empty; no entries will be summarized")
        return self

    def summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "miniflux_url": self.miniflux.url,
            "miniflux_username": self.miniflux.username,
            "miniflux_password": _mask_secret(self.miniflux.password),
            "openai_url": self.openai.url,
            "openai_model": self.openai.model,
            "openai_token": _mask_secret(self.openai.token),
            "webhook_secret": _mask_secret(self.webhook_secret),
            "whitelist": sorted(self.whitelist),
            "http_timeout": self.http_timeout,
            "summarizer_http_timeout": self.summarizer_http_timeout,
            "webhook_bind": f"{self.webhook_host}:{self.webhook_port}",
            "webhook_max_entries": self.webhook_max_entries,
            "poll_interval_minutes": self.poll_interval_minutes,
            "schedule_times": list(self.schedule_times),
            "scheduler_timezone": self.scheduler_timezone,
        }


def _validate_positive_int(env: Mapping[str, str], env_var: str, default: int, min_val: int = 1) -> int:
    """Validate and parse a positive integer environment variable."""
    try:
        value = int(env.get(env_var, str(default)))
        if value < min_val:
            logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
            return default
        return value
    except (ValueError, TypeError):
        logger.warning(f"Invalid {env_var} value, using default {default}")
        return default


def _strip_url(value: Optional[str]) -> str:
    return (value or "").strip().rstrip("/")


def _load_secrets_file(env: MutableMapping[str, str]) -> int:
    """Load environment variable overrides from a YAML secrets file.

    If SECRETS_FILE is set, the YAML mapping it points at is copied into `env`.

    Expected YAML formats (both supported):
        ```yaml
        # Preferred: top-level mapping
        OPENAI_TOKEN: "your-api-key"
        MINIFLUX_PASSWORD: "secret"

        # Backward-compatible: nested under `environment`
        # environment:
        #   OPENAI_TOKEN: "your-api-key"
        ```

    Returns the number of variables loaded.
    """
    secrets_file_path = env.get("SECRETS_FILE")
    if not secrets_file_path:
        logger.debug("SECRETS_FILE not set; relying on environment/.env for secrets")
        return 0

    if not path.isfile(secrets_file_path):
        logger.warning(f"Secrets file not found at {secrets_file_path}")
        return 0
    if not access(secrets_file_path, R_OK):
        logger.error(f"No read permission for secrets file at {secrets_file_path}")
        return 0
    file_size = path.getsize(secrets_file_path)
    if file_size > SECRETS_FILE_SIZE_LIMIT:
        logger.error(f"Secrets file too large: {file_size} bytes (limit: {SECRETS_FILE_SIZE_LIMIT} bytes)")
        return 0

    try:
        with open(secrets_file_path, 'r') as f:
            secrets_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML in secrets file {secrets_file_path}: {e}")
        return 0

    if not isinstance(secrets_config, dict):
        logger.warning(f"Secrets file {secrets_file_path} must be a YAML mapping at the top level")
        return 0

    if isinstance(secrets_config.get('environment'), dict):
        env_vars = secrets_config['environment']
    else:
        env_vars = secrets_config

    secrets_loaded = 0
    for key, value in env_vars.items():
        if isinstance(key, str) and value is not None:
            env[key] = str(value)
            secrets_loaded += 1
            logger.debug(f"Set environment variable {key} from secrets file")
        else:
            logger.warning(f"Skipping invalid environment variable in secrets file: {key}")

    logger.info(f"Loaded {secrets_loaded} environment variables from secrets file {secrets_file_path}")
    return secrets_loaded


def load_config(env: Optional[MutableMapping[str, str]] = None, load_files: bool = True) -> Config:
    """Build a Config snapshot.

    Args:
        env: Mapping to read from (defaults to os.environ). Tests pass a plain dict.
        load_files: Whether to honour .env and SECRETS_FILE before reading values.
    """
    if env is None:
        env = environ
    if load_files:
        dotenv_path = path.join(BASE_DIR, '.env')
        if env is environ and path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")
        _load_secrets_file(env)

    return Config(
        miniflux=MinifluxSettings(
            url=_strip_url(env.get("MINIFLUX_URL")),
            username=env.get("MINIFLUX_USERNAME", ""),
            password=env.get("MINIFLUX_PASSWORD", ""),
        ),
        openai=OpenAISettings(
            url=_strip_url(env.get("OPENAI_URL")),
            token=env.get("OPENAI_TOKEN", ""),
            model=env.get("OPENAI_MODEL", ""),
        ),
        whitelist=parse_whitelist(env.get("WHITELIST_URL")),
        webhook_secret=env.get("MINIFLUX_WEBHOOK_SECRET") or None,
        http_timeout=_validate_positive_int(env, "HTTP_TIMEOUT", 30, 1),
        summarizer_http_timeout=_validate_positive_int(env, "SUMMARIZER_HTTP_TIMEOUT", 60, 5),
        webhook_host=env.get("WEBHOOK_HOST", "0.0.0.0"),
        webhook_port=_validate_positive_int(env, "WEBHOOK_PORT", 8080, 1),
        webhook_max_entries=_validate_positive_int(env, "WEBHOOK_MAX_ENTRIES", 0, 0),
        poll_interval_minutes=_validate_positive_int(env, "POLL_INTERVAL_MINUTES", 30, 1),
        schedule_times=parse_schedule_times(env.get("SCHEDULE_TIMES")),
        scheduler_timezone=env.get("SCHEDULER_TIMEZONE", "UTC") or "UTC",
        scheduler_run_immediately=env.get("SCHEDULER_RUN_IMMEDIATELY", "false").lower() == "true",
        prompt_path=env.get("PROMPT_FILE") or path.join(BASE_DIR, "prompt.yaml"),
    )
