from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_DATA_DIR = ".stella-clips"
DEFAULT_YOUTUBE_API_BASE_URL = "https://youtube.googleapis.com/youtube/v3"
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("state.db")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = ("telemetry_enabled",)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{STELLA_CLIPS_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


def parse_official_channel_ids(value: Any) -> dict[str, str]:
    """Parse `NAME=UCID` pairs (comma separated) into a member -> channel id mapping."""
    if value is None:
        return {}
    if isinstance(value, dict):
        pairs = [(str(key), str(item)) for key, item in value.items()]
    elif isinstance(value, str):
        pairs = []
        for raw_entry in value.split(","):
            entry = raw_entry.strip()
            if not entry:
                continue
            name, separator, channel_id = entry.partition("=")
            if not separator:
                raise ValueError(
                    "STELLA_CLIPS_OFFICIAL_CHANNEL_IDS entries must look like NAME=CHANNEL_ID."
                )
            pairs.append((name, channel_id))
    else:
        raise ValueError("STELLA_CLIPS_OFFICIAL_CHANNEL_IDS must be a string or mapping.")

    parsed: dict[str, str] = {}
    for raw_name, raw_channel_id in pairs:
        name = raw_name.strip().upper()
        channel_id = raw_channel_id.strip()
        if not name or not channel_id:
            raise ValueError(
                "STELLA_CLIPS_OFFICIAL_CHANNEL_IDS entries need both a name and a channel id."
            )
        parsed[name] = channel_id
    return parsed


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    This class is the single source of truth for config options:
    - what each option controls,
    - where it comes from (`STELLA_CLIPS_*`),
    - and what its default is.
    """

    model_config = SettingsConfigDict(
        env_prefix="STELLA_CLIPS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for local state and logs.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("state.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('state.db'))}",
    )
    cohort_table_path: Path | None = Field(
        default=None,
        description=(
            "Optional YAML file (`cohorts: {NAME: [MEMBER, ...]}`) replacing the built-in "
            "cohort table."
        ),
    )

    # YouTube Data API.
    youtube_api_key: str | None = Field(
        default=None,
        description="YouTube Data API key. Ingestion endpoints fail with 502 when unset.",
    )
    youtube_api_base_url: str = Field(
        default=DEFAULT_YOUTUBE_API_BASE_URL,
        description="Base URL for YouTube Data API v3 requests.",
    )
    youtube_http_timeout_seconds: float = Field(
        default=20.0,
        description="Timeout for each YouTube Data API request.",
    )
    youtube_search_max_results: int = Field(
        default=20,
        ge=1,
        le=50,
        description="Default `maxResults` for channel and clip searches.",
    )
    official_channel_ids: Annotated[dict[str, str], NoDecode] = Field(
        default_factory=lambda: {},
        description=(
            "Official channel allow-list as comma-separated `NAME=CHANNEL_ID` pairs. "
            "A video is official iff its channel id appears here."
        ),
    )

    # Query and ingestion guardrails.
    search_default_limit: int = Field(
        default=20,
        ge=1,
        description="Default page size for `/videos/search` when `limit` is omitted.",
    )
    search_max_limit: int = Field(
        default=100,
        ge=1,
        description="Largest page size accepted by `/videos/search`.",
    )
    ingest_batch_max_items: int = Field(
        default=50,
        ge=1,
        description="Maximum number of raw video resources accepted per ingest batch.",
    )
    batch_max_channels: int = Field(
        default=10,
        ge=1,
        description="Maximum number of members accepted by `/youtube/batch`.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (DEBUG, INFO, WARNING, ERROR).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    # Search client (fetch coordinator).
    client_api_base_url: str = Field(
        default="http://127.0.0.1:8000",
        description="Base URL the search client talks to.",
    )
    client_stale_time_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Cached search results younger than this are served without a fetch.",
    )
    client_gc_time_seconds: float = Field(
        default=1800.0,
        ge=0,
        description="Cached search results unused for this long are evicted.",
    )
    client_retry_max_attempts: int = Field(
        default=3,
        ge=0,
        description="Retries after the first failed attempt for transient search errors.",
    )
    client_retry_base_ms: int = Field(
        default=1000,
        ge=0,
        description="Base delay for exponential retry backoff.",
    )
    client_retry_cap_ms: int = Field(
        default=30_000,
        ge=0,
        description="Upper bound for a single retry delay.",
    )
    client_http_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for each search request made by the client.",
    )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("STELLA_CLIPS_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("STELLA_CLIPS_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("youtube_api_base_url", "client_api_base_url", mode="before")
    @classmethod
    def _normalize_base_url(cls, value: Any, info: ValidationInfo) -> str:
        env_name = f"STELLA_CLIPS_{str(info.field_name).upper()}"
        if not isinstance(value, str):
            raise ValueError(f"{env_name} must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError(f"{env_name} must not be empty.")
        return normalized

    @field_validator("official_channel_ids", mode="before")
    @classmethod
    def _parse_official_channel_ids(cls, value: Any) -> dict[str, str]:
        return parse_official_channel_ids(value)

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator("cohort_table_path", mode="before")
    @classmethod
    def _normalize_cohort_table_path(cls, value: Any) -> Path | None:
        normalized = _normalize_optional_text(value) if not isinstance(value, Path) else value
        if normalized is None:
            return None
        return _resolve_path(normalized)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator("youtube_api_key", mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)

    @property
    def official_channel_id_set(self) -> frozenset[str]:
        return frozenset(self.official_channel_ids.values())


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings() -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    return _resolve_path_fields(settings)
