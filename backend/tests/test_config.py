"""Configuration loading tests."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import yaml

from pet_context.core.config import PACKAGED_CORPUS_PATH, Settings, get_settings
from pet_context.core.logging import JsonFormatter, log_context


def test_defaults_point_at_packaged_corpus(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PETCTX_EMBEDDING_DIM", raising=False)
    settings = Settings.from_yaml(Path("/nonexistent/config.yaml"))

    assert settings.corpus_path == PACKAGED_CORPUS_PATH
    assert settings.embedding_dim == 1024
    assert settings.retrieval_deadline == 5.0
    assert settings.sync_workers == 3
    assert settings.sync_max_attempts == 3
    assert settings.naver_enabled is False


def test_yaml_sections_are_flattened(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PETCTX_DB_PATH", raising=False)
    config = tmp_path / "config.yaml"
    config.write_text(
        yaml.safe_dump(
            {
                "storage": {"db_path": str(tmp_path / "yaml.db"), "vector_backend": "memory"},
                "retrieval": {"deadline": 2.5, "max_items": 4},
                "sources": {"naver": {"client_id": "cid", "client_secret": "secret"}},
                "html_sources": [
                    {
                        "name": "petmd",
                        "url_template": "https://www.petmd.com/search?query={query}",
                        "title_xpath": "//h3",
                        "summary_xpath": "//p",
                        "timeout": 1.0,
                    }
                ],
            }
        ),
        encoding="utf-8",
    )

    settings = Settings.from_yaml(config)

    assert settings.db_path == tmp_path / "yaml.db"
    assert settings.vector_backend == "memory"
    assert settings.retrieval_deadline == 2.5
    assert settings.max_context_items == 4
    assert settings.naver_enabled is True
    assert settings.html_sources[0].name == "petmd"
    assert settings.html_sources[0].timeout == 1.0


def test_environment_overrides_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(yaml.safe_dump({"retrieval": {"deadline": 2.5}}), encoding="utf-8")
    monkeypatch.setenv("PETCTX_CONFIG", str(config))
    monkeypatch.setenv("PETCTX_RETRIEVAL_DEADLINE", "0.75")
    get_settings.cache_clear()

    settings = get_settings()

    assert settings.retrieval_deadline == 0.75
    assert settings.db_path == tmp_path / "pc.db"
    assert get_settings() is settings


def test_empty_corpus_path_disables_corpus(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PETCTX_CORPUS_PATH", "")
    assert Settings.from_yaml(Path("/nonexistent/config.yaml")).corpus_path is None


def test_json_formatter_copies_context_fields() -> None:
    record = logging.LogRecord("pet_context.test", logging.INFO, __file__, 1, "ACKED %s", ("CREATED",), None)
    for key, value in log_context(record_id="42", state="ACKED").items():
        setattr(record, key, value)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "ACKED CREATED"
    assert payload["context"] == {"record_id": "42", "state": "ACKED"}
    assert payload["level"] == "INFO"
