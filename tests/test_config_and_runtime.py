from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
from click.testing import CliRunner
from pydantic import ValidationError

from backend.app.config import load_settings, parse_official_channel_ids
from backend.app.dependencies import get_taxonomy, reset_cached_dependencies
from backend.app.logging_config import ROOT_LOGGER_NAME, configure_application_logging
from backend.app.scripts.manage import main


@pytest.fixture
def runtime_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    data_dir = tmp_path / "runtime-data"
    monkeypatch.setenv("STELLA_CLIPS_DATA_DIR", str(data_dir))
    monkeypatch.setenv("STELLA_CLIPS_OFFICIAL_CHANNEL_IDS", "rin=UC_rin_official")
    monkeypatch.delenv("STELLA_CLIPS_YOUTUBE_API_KEY", raising=False)
    reset_cached_dependencies()
    yield data_dir
    reset_cached_dependencies()


def test_load_settings_parses_env_and_paths(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    data_dir = tmp_path / "runtime-data"
    cohort_table = tmp_path / "cohorts.yaml"
    monkeypatch.setenv("STELLA_CLIPS_DATA_DIR", str(data_dir))
    monkeypatch.setenv("STELLA_CLIPS_OFFICIAL_CHANNEL_IDS", " rin = UC_rin , yuni=UC_yuni ,")
    monkeypatch.setenv("STELLA_CLIPS_COHORT_TABLE_PATH", str(cohort_table))
    monkeypatch.setenv("STELLA_CLIPS_YOUTUBE_API_KEY", "   ")
    monkeypatch.setenv("STELLA_CLIPS_YOUTUBE_API_BASE_URL", " https://youtube.test/v3/ ")
    monkeypatch.setenv("STELLA_CLIPS_TELEMETRY_ENABLED", "off")
    monkeypatch.setenv("STELLA_CLIPS_TELEMETRY_SINK", " LOG ")
    monkeypatch.setenv("STELLA_CLIPS_CLIENT_RETRY_MAX_ATTEMPTS", "5")

    settings = load_settings()

    assert settings.data_dir == data_dir.resolve()
    assert settings.db_path == data_dir.resolve() / "state.db"
    assert settings.log_dir == data_dir.resolve() / "logs"
    assert settings.cohort_table_path == cohort_table.resolve()
    assert settings.official_channel_ids == {"RIN": "UC_rin", "YUNI": "UC_yuni"}
    assert settings.official_channel_id_set == frozenset({"UC_rin", "UC_yuni"})
    assert settings.youtube_api_key is None
    assert settings.youtube_api_base_url == "https://youtube.test/v3"
    assert settings.telemetry_enabled is False
    assert settings.telemetry_sink == "log"
    assert settings.client_retry_max_attempts == 5
    assert settings.client_stale_time_seconds == 300.0


def test_explicit_db_path_is_kept(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STELLA_CLIPS_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("STELLA_CLIPS_DB_PATH", str(tmp_path / "elsewhere.db"))
    assert load_settings().db_path == (tmp_path / "elsewhere.db").resolve()


def test_invalid_settings_are_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STELLA_CLIPS_OFFICIAL_CHANNEL_IDS", "RIN")
    with pytest.raises(ValidationError):
        load_settings()

    monkeypatch.setenv("STELLA_CLIPS_OFFICIAL_CHANNEL_IDS", "")
    monkeypatch.setenv("STELLA_CLIPS_YOUTUBE_SEARCH_MAX_RESULTS", "80")
    with pytest.raises(ValidationError):
        load_settings()


def test_parse_official_channel_ids() -> None:
    assert parse_official_channel_ids(None) == {}
    assert parse_official_channel_ids({"hina": " UC_hina "}) == {"HINA": "UC_hina"}
    with pytest.raises(ValueError):
        parse_official_channel_ids("RIN=")


def test_cohort_table_path_drives_taxonomy(
    tmp_path: Path,
    runtime_env: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _ = runtime_env
    cohort_table = tmp_path / "cohorts.yaml"
    cohort_table.write_text("cohorts:\n  solo:\n    - alpha\n", encoding="utf-8")
    monkeypatch.setenv("STELLA_CLIPS_COHORT_TABLE_PATH", str(cohort_table))
    reset_cached_dependencies()

    assert get_taxonomy().as_dict() == {"SOLO": ["ALPHA"]}


def test_configure_application_logging_writes_json_lines(runtime_env: Path) -> None:
    _ = runtime_env
    settings = load_settings()
    paths = configure_application_logging(settings)

    logging.getLogger(f"{ROOT_LOGGER_NAME}.ingest").info("ingest test line video_id=%s", "yt_1")
    for handler in logging.getLogger(ROOT_LOGGER_NAME).handlers:
        handler.flush()

    lines = paths.application.read_text(encoding="utf-8").splitlines()
    entries = [json.loads(line) for line in lines]
    assert any(entry["event"] == "ingest test line video_id=yt_1" for entry in entries)
    assert all("timestamp" in entry for entry in entries)
    assert paths.telemetry.parent == settings.log_dir


def test_manage_cli_status_and_seed(runtime_env: Path) -> None:
    _ = runtime_env
    runner = CliRunner()

    seeded = runner.invoke(main, ["seed"])
    assert seeded.exit_code == 0, seeded.output
    assert "Seeded 9 members" in seeded.output

    status = runner.invoke(main, ["status"])
    assert status.exit_code == 0, status.output
    assert "Videos: 0" in status.output
    assert "UC_rin_official" in status.output
    assert "missing" in status.output


def test_manage_cli_ingest_file_and_search(runtime_env: Path, tmp_path: Path) -> None:
    _ = runtime_env
    payload = {
        "items": [
            {
                "id": "yt_cli",
                "snippet": {
                    "title": "TABI singing",
                    "channelId": "UC_fan_clips",
                    "publishedAt": "2025-02-01T00:00:00Z",
                },
                "contentDetails": {"duration": "PT3M"},
                "statistics": {"viewCount": "12"},
            },
            {"id": "yt_broken"},
        ]
    }
    source = tmp_path / "videos.json"
    source.write_text(json.dumps(payload), encoding="utf-8")
    runner = CliRunner()

    ingested = runner.invoke(main, ["ingest-file", str(source)])
    assert ingested.exit_code == 0, ingested.output
    assert "1 created" in ingested.output
    assert "1 skipped" in ingested.output

    found = runner.invoke(main, ["search", "--member", "tabi"])
    assert found.exit_code == 0, found.output
    assert "yt_cli" in found.output

    rejected = runner.invoke(main, ["search", "--member", "nobody"])
    assert rejected.exit_code == 1
    assert "Invalid member" in rejected.output


def test_manage_cli_export_openapi(runtime_env: Path, tmp_path: Path) -> None:
    _ = runtime_env
    output = tmp_path / "openapi" / "openapi.json"

    result = CliRunner().invoke(main, ["export-openapi", "--output", str(output)])

    assert result.exit_code == 0, result.output
    schema = json.loads(output.read_text(encoding="utf-8"))
    assert "/videos/search" in schema["paths"]
