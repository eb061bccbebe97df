"""Settings for the merge resolver, layered from several sources.

Values come from built-in defaults, a YAML or TOML file, ``MR_*`` environment
variables and command-line flags. Later sources win in that order, so a CLI
flag beats an environment variable, which beats the file.
"""

import logging
import os
import tomllib
from collections.abc import Callable
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from pr_merge_resolver.config.exceptions import ConfigError

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

_TRUE_WORDS = ("true", "1", "yes", "on")
_FALSE_WORDS = ("false", "0", "no", "off")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    word = raw.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ConfigError(
        f"Invalid {name}='{raw}'; expected one of {', '.join(_TRUE_WORDS + _FALSE_WORDS)}"
    )


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        number = int(raw)
    except ValueError as e:
        raise ConfigError(f"{name}='{raw}' is not valid. Must be an integer") from e
    if number < minimum:
        raise ConfigError(f"{name}={number} must be >= {minimum}")
    return number


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name}='{raw}' is not valid. Must be a number") from e


def _env_str(name: str, default: str | None) -> str | None:
    return os.environ.get(name) or default


@dataclass(frozen=True, slots=True)
class RuntimeConfig:
    """Immutable settings for one resolver process.

    Instances are checked in ``__post_init__``, so every constructor below either
    returns a usable configuration or raises ConfigError.

    Attributes:
        github_token: Token used for GitHub REST calls and authenticated git fetches.
        github_api_url: Base URL of the GitHub REST API.
        http_timeout: Timeout in seconds for each GitHub request.
        resolver_url: Base URL of the resolver service that proposes merged file content.
        resolver_timeout: Timeout in seconds for a single resolver request.
        mergeable_retries: Number of mergeable-status reads before giving up.
        mergeable_retry_delay: Seconds to wait between mergeable-status reads.
        git_enabled: Try the local git merge strategy before the content diff.
        git_timeout: Timeout in seconds for each git subprocess.
        max_workers: Thread pool size for concurrent content fetches.
        ephemeral_branch_prefix: Prefix of the temporary branch used while applying.
        database_path: SQLite file for stored resolutions. None keeps them in memory.
        log_level: Name of a standard logging level.
        log_file: File that receives log records. None means stderr.

    Example:
        >>> config = RuntimeConfig.from_env().merge_with_cli(git_enabled=False)
        >>> config.git_enabled
        False
    """

    github_token: str | None
    github_api_url: str
    http_timeout: int
    resolver_url: str
    resolver_timeout: int
    mergeable_retries: int
    mergeable_retry_delay: float
    git_enabled: bool
    git_timeout: int
    max_workers: int
    ephemeral_branch_prefix: str
    database_path: str | None
    log_level: str
    log_file: str | None

    def __post_init__(self) -> None:
        if self.log_level not in VALID_LOG_LEVELS:
            raise ConfigError(
                f"Invalid log level: {self.log_level}. Must be one of {VALID_LOG_LEVELS}"
            )

        for name in ("http_timeout", "resolver_timeout", "git_timeout", "max_workers"):
            value = getattr(self, name)
            if value < 1:
                raise ConfigError(f"{name} must be >= 1, got {value}")

        if self.mergeable_retries < 1:
            raise ConfigError(f"mergeable_retries must be >= 1, got {self.mergeable_retries}")

        if self.mergeable_retry_delay < 0:
            raise ConfigError(
                f"mergeable_retry_delay must be >= 0, got {self.mergeable_retry_delay}"
            )

        if self.max_workers > 16:
            logger.warning(
                f"max_workers={self.max_workers} is very high for GitHub content reads. "
                f"Secondary rate limits may reject concurrent requests."
            )

        if not self.ephemeral_branch_prefix or any(
            ch.isspace() for ch in self.ephemeral_branch_prefix
        ):
            raise ConfigError(
                f"ephemeral_branch_prefix must be a non-empty ref segment, "
                f"got '{self.ephemeral_branch_prefix}'"
            )

        for name in ("github_api_url", "resolver_url"):
            url = getattr(self, name)
            if not url.startswith(("http://", "https://")):
                raise ConfigError(f"{name} must be an http(s) URL, got '{url}'")

    @classmethod
    def from_defaults(cls) -> "RuntimeConfig":
        """Built-in settings: public GitHub, a local resolver, git strategy on."""
        return cls(
            github_token=None,
            github_api_url="https://api.github.com",
            http_timeout=30,
            resolver_url="http://localhost:5000",
            resolver_timeout=120,
            mergeable_retries=5,
            mergeable_retry_delay=2.5,
            git_enabled=True,
            git_timeout=120,
            max_workers=3,
            ephemeral_branch_prefix="temp-merge-",
            database_path=None,
            log_level="INFO",
            log_file=None,
        )

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        """Read settings from the environment, falling back to defaults.

        Variables: ``MR_GITHUB_TOKEN`` (``GITHUB_TOKEN`` as fallback),
        ``MR_GITHUB_API_URL``, ``MR_HTTP_TIMEOUT``, ``MR_RESOLVER_URL``,
        ``MR_RESOLVER_TIMEOUT``, ``MR_MERGEABLE_RETRIES``,
        ``MR_MERGEABLE_RETRY_DELAY``, ``MR_GIT_ENABLED``, ``MR_GIT_TIMEOUT``,
        ``MR_MAX_WORKERS``, ``MR_BRANCH_PREFIX``, ``MR_DATABASE_PATH``,
        ``MR_LOG_LEVEL`` and ``MR_LOG_FILE``.

        Raises:
            ConfigError: If a variable cannot be parsed or is out of range.
        """
        defaults = cls.from_defaults()
        return cls(
            github_token=_env_str("MR_GITHUB_TOKEN", None) or _env_str("GITHUB_TOKEN", None),
            github_api_url=(_env_str("MR_GITHUB_API_URL", None) or defaults.github_api_url).rstrip(
                "/"
            ),
            http_timeout=_env_int("MR_HTTP_TIMEOUT", defaults.http_timeout),
            resolver_url=(_env_str("MR_RESOLVER_URL", None) or defaults.resolver_url).rstrip("/"),
            resolver_timeout=_env_int("MR_RESOLVER_TIMEOUT", defaults.resolver_timeout),
            mergeable_retries=_env_int("MR_MERGEABLE_RETRIES", defaults.mergeable_retries),
            mergeable_retry_delay=_env_float(
                "MR_MERGEABLE_RETRY_DELAY", defaults.mergeable_retry_delay
            ),
            git_enabled=_env_bool("MR_GIT_ENABLED", defaults.git_enabled),
            git_timeout=_env_int("MR_GIT_TIMEOUT", defaults.git_timeout),
            max_workers=_env_int("MR_MAX_WORKERS", defaults.max_workers),
            ephemeral_branch_prefix=_env_str("MR_BRANCH_PREFIX", None)
            or defaults.ephemeral_branch_prefix,
            database_path=_env_str("MR_DATABASE_PATH", defaults.database_path),
            log_level=(_env_str("MR_LOG_LEVEL", None) or defaults.log_level).upper(),
            log_file=_env_str("MR_LOG_FILE", defaults.log_file),
        )

    @classmethod
    def from_file(cls, config_path: Path) -> "RuntimeConfig":
        """Read settings from a ``.yaml``/``.yml`` or ``.toml`` file.

        Args:
            config_path: Location of the file.

        Raises:
            ConfigError: If the file is missing, unreadable, malformed or holds
                out-of-range values.
        """
        path = Path(config_path)
        if not path.is_file():
            kind = "is not a file" if path.exists() else "not found"
            raise ConfigError(f"Config file {kind}: {path}")

        suffix = path.suffix.lower()
        if suffix in (".yaml", ".yml"):
            data = cls._parse(path, yaml.safe_load, yaml.YAMLError, "YAML")
        elif suffix == ".toml":
            data = cls._parse(path, tomllib.loads, tomllib.TOMLDecodeError, "TOML")
        else:
            raise ConfigError(
                f"Unsupported config file format: {suffix}. Use .yaml, .yml or .toml"
            )

        if not isinstance(data, dict):
            raise ConfigError(
                f"{path} must hold a mapping at the top level, got {type(data).__name__}"
            )
        return cls._from_dict(data, path)

    @staticmethod
    def _parse(
        path: Path, loader: Callable[[str], Any], error: type[Exception], label: str
    ) -> Any:  # noqa: ANN401
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Could not read {path}: {e}") from e
        try:
            return loader(text)
        except error as e:
            raise ConfigError(f"Invalid {label} in {path}: {e}") from e

    @classmethod
    def _from_dict(cls, data: dict[str, Any], source: Path) -> "RuntimeConfig":
        """Map the sectioned file layout onto fields.

        Sections are ``github``, ``resolver``, ``mergeable``, ``git``, ``apply``,
        ``storage`` and ``logging``; ``max_workers`` sits at the top level.
        """
        defaults = cls.from_defaults()

        def section(name: str) -> dict[str, Any]:
            value = data.get(name, {})
            if not isinstance(value, dict):
                raise ConfigError(f"Invalid {name} type in {source}: {type(value).__name__}")
            return value

        github = section("github")
        resolver = section("resolver")
        mergeable = section("mergeable")
        git = section("git")
        apply = section("apply")
        storage = section("storage")
        logging_config = section("logging")

        database_path = storage.get("database", defaults.database_path)
        log_file = logging_config.get("file", defaults.log_file)

        try:
            return cls(
                github_token=github.get("token", defaults.github_token),
                github_api_url=str(github.get("api_url", defaults.github_api_url)).rstrip("/"),
                http_timeout=int(github.get("timeout", defaults.http_timeout)),
                resolver_url=str(resolver.get("url", defaults.resolver_url)).rstrip("/"),
                resolver_timeout=int(resolver.get("timeout", defaults.resolver_timeout)),
                mergeable_retries=int(mergeable.get("retries", defaults.mergeable_retries)),
                mergeable_retry_delay=float(mergeable.get("delay", defaults.mergeable_retry_delay)),
                git_enabled=bool(git.get("enabled", defaults.git_enabled)),
                git_timeout=int(git.get("timeout", defaults.git_timeout)),
                max_workers=int(data.get("max_workers", defaults.max_workers)),
                ephemeral_branch_prefix=str(
                    apply.get("branch_prefix", defaults.ephemeral_branch_prefix)
                ),
                database_path=str(database_path) if database_path else None,
                log_level=str(logging_config.get("level", defaults.log_level)).upper(),
                log_file=str(log_file) if log_file else None,
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value in {source}: {e}") from e

    def merge_with_cli(self, **overrides: Any) -> "RuntimeConfig":  # noqa: ANN401
        """Return a copy with the given fields replaced.

        Keyword names must be RuntimeConfig fields. A None value leaves the field
        as it is, which lets unset CLI flags pass straight through.

        Raises:
            ConfigError: If a name is unknown or a new value fails validation.
        """
        filtered_overrides = {k: v for k, v in overrides.items() if v is not None}

        known = {f.name for f in fields(self)}
        unknown = set(filtered_overrides) - known
        if unknown:
            raise ConfigError(f"Unknown configuration fields: {sorted(unknown)}")

        if isinstance(filtered_overrides.get("log_level"), str):
            filtered_overrides["log_level"] = filtered_overrides["log_level"].upper()

        try:
            return replace(self, **filtered_overrides)
        except ConfigError:
            raise
        except Exception as e:
            raise ConfigError(f"Failed to apply CLI overrides: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        """Plain dict of every field, with the GitHub token masked."""
        return {
            "github_token": "***" if self.github_token else None,
            "github_api_url": self.github_api_url,
            "http_timeout": self.http_timeout,
            "resolver_url": self.resolver_url,
            "resolver_timeout": self.resolver_timeout,
            "mergeable_retries": self.mergeable_retries,
            "mergeable_retry_delay": self.mergeable_retry_delay,
            "git_enabled": self.git_enabled,
            "git_timeout": self.git_timeout,
            "max_workers": self.max_workers,
            "ephemeral_branch_prefix": self.ephemeral_branch_prefix,
            "database_path": self.database_path,
            "log_level": self.log_level,
            "log_file": self.log_file,
        }
