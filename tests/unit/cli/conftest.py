"""Fixtures shared by the CLI command tests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from bimcontext.cli.main import app


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Run every command in tmp_path with no global config and no env overrides."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("bimcontext.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    for var in ("BIMCONTEXT_DB", "BIMCONTEXT_LANGUAGE", "BIMCONTEXT_MAX_CONTEXT_TOKENS"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def model_file(tmp_path: Path) -> Path:
    """A small extracted model: one storey, 20 walls, 6 duct segments."""
    entities = [{"expressID": 100, "type": "IFCBUILDINGSTOREY", "name": "Level 1"}]
    entities += [
        {
            "expressID": i,
            "type": "IFCWALL",
            "name": f"Wall {i}",
            "properties": {"Volume": 1.5, "Material": "Beton", "Comment": "load bearing wall " * 3},
        }
        for i in range(101, 121)
    ]
    entities += [
        {"expressID": i, "type": "IFCDUCTSEGMENT", "name": f"Duct {i}"} for i in range(121, 127)
    ]
    path = tmp_path / "tower.json"
    path.write_text(json.dumps({"entities": entities}), encoding="utf-8")
    return path


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "store" / "chunks.db"


@pytest.fixture
def stored_project(model_file: Path, db_path: Path) -> Path:
    """Process model_file into db_path as project 'tower'; returns the db path."""
    result = CliRunner().invoke(
        app,
        [
            "process", str(model_file),
            "--project", "tower",
            "--db", str(db_path),
            "--target-tokens", "400",
            "--max-tokens", "600",
        ],
    )
    assert result.exit_code == 0, result.output
    return db_path
