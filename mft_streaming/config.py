"""
Configuration for the streaming upload client.

UploadConfig is immutable. It can be built directly or from ``MFT_*``
environment variables, optionally loaded from a ``.env`` file.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_AUTHORITY_URL = "https://api-test.raet.com/authentication/token"
DEFAULT_UPLOAD_PATH = "/files/upload"
ENV_PREFIX = "MFT_"


class ConfigError(RuntimeError):
    """Raised when configuration values are missing or invalid."""


@dataclass(frozen=True)
class UploadConfig:
    """Immutable configuration for upload operations."""
    base_url: str = ""
    upload_path: str = DEFAULT_UPLOAD_PATH
    authority_url: str = DEFAULT_AUTHORITY_URL
    client_id: Optional[str] = None
    client_secret: Optional[str] = field(default=None, repr=False)
    tenant_id: Optional[str] = None
    # Timeouts (seconds)
    timeout: float = 60.0          # single HTTP exchange
    upload_deadline: float = 300.0  # whole upload call, retries included
    # Retry policy
    max_attempts: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 8.0
    # Token cache
    token_safety_margin: float = 30.0
    default_token_lifetime: float = 3600.0
    # Orchestration
    max_parallel: Optional[int] = None
    fail_fast: bool = False
    derive_idempotency_key: bool = False

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.max_parallel is not None and self.max_parallel < 1:
            raise ConfigError(f"max_parallel must be >= 1, got {self.max_parallel}")
        if self.timeout <= 0 or self.upload_deadline <= 0:
            raise ConfigError("timeout and upload_deadline must be positive")

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def get_backoff(self, attempt: int) -> float:
        """Delay before retrying after the given 1-based attempt."""
        return min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "UploadConfig":
        """
        Build config from ``MFT_*`` variables.

        Recognized: MFT_BASE_URL, MFT_UPLOAD_PATH, MFT_AUTHORITY_URL,
        MFT_CLIENT_ID, MFT_CLIENT_SECRET, MFT_TENANT_ID, MFT_TIMEOUT,
        MFT_UPLOAD_DEADLINE, MFT_MAX_ATTEMPTS, MFT_MAX_PARALLEL, MFT_FAIL_FAST.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            if value is None or value.strip() == "":
                return None
            return value.strip()

        kwargs = {}
        for key in ("base_url", "upload_path", "authority_url", "client_id", "client_secret", "tenant_id"):
            value = get(key.upper())
            if value is not None:
                kwargs[key] = value

        for key, cast in (
            ("timeout", float),
            ("upload_deadline", float),
            ("max_attempts", int),
            ("max_parallel", int),
        ):
            raw = get(key.upper())
            if raw is None:
                continue
            try:
                kwargs[key] = cast(raw)
            except ValueError as exc:
                raise ConfigError(f"{ENV_PREFIX}{key.upper()} is not a valid {cast.__name__}: {raw!r}") from exc

        fail_fast = get("FAIL_FAST")
        if fail_fast is not None:
            kwargs["fail_fast"] = fail_fast.lower() in {"1", "true", "yes", "on"}

        return cls(**kwargs)


def _strip_optional_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def load_env_file(path: Path, override: bool = False) -> None:
    """Load KEY=VALUE lines from ``path`` into os.environ."""
    if not path.exists():
        raise ConfigError(f"env file not found: {path}")
    if not path.is_file():
        raise ConfigError(f"env path is not a file: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"could not read env file {path}: {exc}") from exc

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = _strip_optional_quotes(value.strip())
        if override or key not in os.environ:
            os.environ[key] = value
