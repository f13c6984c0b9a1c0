from pathlib import Path
from typing import Annotated

import orjson
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ROOT_DIR = Path(__file__).parents[1]


class Settings(BaseSettings):
    """Manages toolkit-wide configuration settings using Pydantic.
    Values are read from environment variables and from a `.env` file at the
    project root.
    The settings are grouped as follows:
    - Directory Paths: logs, reports and on-disk cache.
    - Redis Configuration: the optional external object cache.
    - Cache Configuration: TTL, key length, memory limit and layer toggles.
    - Security: nonce lifetime/secret and AJAX rate limiting.
    - Validation: pass threshold and the tooling the environment suite looks for.
    Attributes:
        ROOT_DIR (Path): The absolute path to the project's root directory.
        LOGS_DIR (Path): Directory for rotating log files.
        REPORTS_DIR (Path): Directory where JSON/HTML run reports are written.
        CACHE_DIR (Path): Root of the on-disk transient store.
        OPTIONS_FILE (Path | None): JSON file backing the options store, in-memory when None.
        REDIS_HOST (str): Hostname for the Redis server.
        REDIS_PORT (int): Port number for the Redis server.
        USE_REDIS (bool): Enables the Redis object-cache layer.
        CACHE_PREFIX (str): Prefix of every canonical cache key.
        CACHE_TTL_DEFAULT (int): TTL applied when a caller passes none or a malformed one.
        CACHE_MAX_KEY_LENGTH (int): Canonical keys longer than this get their key part hashed.
        CACHE_MEMORY_LIMIT (int): Byte budget of the in-process entry store.
        NONCE_LIFETIME (int): Nonce lifetime in seconds, split into two ticks.
        VALIDATION_THRESHOLD (float): Minimum score (percent) for a run to pass.
        REQUIRED_TOOLS (list[str]): Executables whose absence aborts a validation run.
        OPTIONAL_TOOLS (list[str]): Executables reported on but not mandatory.
    Methods:
        coerce_tool_list(cls, v): Accepts the tool lists as JSON or comma-separated strings.
    """

    ROOT_DIR: Path = ROOT_DIR
    LOGS_DIR: Path = ROOT_DIR / "logs"
    REPORTS_DIR: Path = ROOT_DIR / "reports"
    CACHE_DIR: Path = ROOT_DIR / ".cache"
    OPTIONS_FILE: Path | None = None

    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB_CACHE: int = 0
    USE_REDIS: bool = False  # Object-cache layer; off unless a Redis server is around

    @property
    def REDIS_URL(self) -> str:
        """Redis connection URL for redis-py."""
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB_CACHE}"

    # Cache settings
    CACHE_PREFIX: str = "las_fresh_"
    CACHE_TTL_DEFAULT: int = 3600
    CACHE_MAX_KEY_LENGTH: int = 250
    CACHE_MEMORY_LIMIT: int = 10485760  # 10MB
    CACHE_ENABLE_MEMORY: bool = True
    CACHE_ENABLE_TRANSIENTS: bool = False
    CACHE_WARMUP: bool = False

    # Security
    SECRET_KEY: str = "CHANGE_ME_32_BYTES_RANDOM"
    NONCE_LIFETIME: int = 86400
    RATE_LIMIT_PER_MINUTE: int = 60
    SLOW_REQUEST_MS: int = 500

    # Validation runs
    VALIDATION_THRESHOLD: float = 90.0
    REQUIRED_TOOLS: Annotated[list[str], NoDecode] = Field(default_factory=list)
    OPTIONAL_TOOLS: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["php", "phpunit", "node", "npm", "chromium", "firefox"]
    )

    PLUGIN_VERSION: str = "2.0.0"

    # Pydantic -> .env
    model_config = SettingsConfigDict(
        env_file=ROOT_DIR / ".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("REQUIRED_TOOLS", "OPTIONAL_TOOLS", mode="before")
    @classmethod
    def coerce_tool_list(cls, v):
        if isinstance(v, (list, tuple)):
            return list(v)
        try:
            parsed = orjson.loads(v)
            if isinstance(parsed, list):
                return parsed
        except orjson.JSONDecodeError:
            pass
        return [s.strip() for s in str(v).split(",") if s.strip()]


settings = Settings()
