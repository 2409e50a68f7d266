"""Tests for bimcontext rich error messages."""

from __future__ import annotations

import pytest

from bimcontext.cli.errors import (
    err_chunking_failed,
    err_config,
    err_invalid_language,
    err_invalid_manifest,
    err_model_file,
    err_no_db,
    err_project_exists,
    err_project_not_found,
    err_storage,
    warn_chunking,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _has_what_and_action(msg: str) -> bool:
    """Every error must contain a cause AND an actionable instruction."""
    lower = msg.lower()
    return "error:" in lower and any(
        kw in lower for kw in ["run:", "use:", "fix ", "check ", "expected:"]
    )


# ---------------------------------------------------------------------------
# All errors
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "msg",
    [
        err_no_db(),
        err_config("bad value"),
        err_model_file("model.json", "file not found"),
        err_project_exists("tower"),
        err_project_not_found("tower"),
        err_chunking_failed("Chunking failed: boom"),
        err_storage("disk full"),
        err_invalid_language("fr"),
        err_invalid_manifest("tower", 2),
    ],
)
def test_every_error_has_cause_and_action(msg: str) -> None:
    assert _has_what_and_action(msg)


# ---------------------------------------------------------------------------
# Individual messages
# ---------------------------------------------------------------------------


def test_err_no_db_default_path() -> None:
    assert "'.bimcontext.db'" in err_no_db()


def test_err_no_db_custom_path() -> None:
    msg = err_no_db("/data/chunks.db")
    assert "/data/chunks.db" in msg
    assert "bimcontext process" in msg


def test_err_config_includes_message() -> None:
    assert "cache.capacity must be >= 1" in err_config("cache.capacity must be >= 1, got 0")


def test_err_model_file_names_path_and_reason() -> None:
    msg = err_model_file("tower.json", "file not found")
    assert "'tower.json'" in msg
    assert "file not found" in msg
    assert "entityIndex" in msg


def test_err_project_exists_suggests_replace() -> None:
    msg = err_project_exists("tower")
    assert "'tower' already exists" in msg
    assert "--project tower --replace" in msg


def test_err_project_not_found_suggests_status() -> None:
    msg = err_project_not_found("ghost")
    assert "'ghost' not found" in msg
    assert "bimcontext status" in msg


def test_err_chunking_failed_suggests_verbose() -> None:
    msg = err_chunking_failed("Chunking failed: no strategies")
    assert "Chunking failed: no strategies" in msg
    assert "--verbose" in msg


def test_err_storage_suggests_rebuild() -> None:
    msg = err_storage("Malformed stored chunk c1")
    assert "Malformed stored chunk c1" in msg
    assert "bimcontext rebuild" in msg


def test_err_invalid_language_lists_choices() -> None:
    msg = err_invalid_language("fr")
    assert "'fr'" in msg
    assert "--language de" in msg
    assert "--language en" in msg


def test_err_invalid_manifest_counts_problems() -> None:
    msg = err_invalid_manifest("tower", 3)
    assert "3 problem(s)" in msg
    assert "bimcontext rebuild tower" in msg


def test_warn_chunking_is_not_an_error() -> None:
    msg = warn_chunking("Strategy broken failed: boom")
    assert "Strategy broken failed: boom" in msg
    assert "error" not in msg.lower()
