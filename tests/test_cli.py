from __future__ import annotations

import json
import logging
from pathlib import Path

import pandas as pd
import pytest
import yaml
from typer.testing import CliRunner

from phylopath.cli import app
from phylopath.utils.config_loader import resolve_config
from phylopath.utils.logging_utils import ROOT_LOGGER

runner = CliRunner()


@pytest.fixture(autouse=True)
def _reset_logging():
    # the CLI attaches a console handler bound to the runner's captured stdout
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()


def test_resolve_config_fills_defaults_and_paths(cfg_path: Path):
    cfg = resolve_config(cfg_path, overrides_json='{"analysis": {"cor_fun": "brownian"}}')
    assert cfg["analysis"]["cor_fun"] == "brownian"
    assert cfg["analysis"]["na_rm"] is True
    assert cfg["analysis"]["parallel"] is None
    assert Path(cfg["analysis"]["data"]).is_absolute()
    assert Path(cfg["analysis"]["data"]).exists()
    assert set(cfg["models"]) == {"chain", "reversed", "direct"}


def test_run_writes_artifacts(cfg_path: Path, cfg):
    result = runner.invoke(app, ["run", "-c", str(cfg_path), "--run-id", "test", "--no-log-file", "--no-log-json"])
    assert result.exit_code == 0, result.output
    out_dir = Path(cfg["run"]["output_dir"])
    for name in ("summary.csv", "d_sep.csv", "best.csv", "average.csv", "run_manifest.json"):
        assert (out_dir / name).exists(), name

    summary = pd.read_csv(out_dir / "summary.csv")
    assert summary["model"].iloc[0] == "chain"
    assert summary["w"].sum() > 0.999
    d_sep = pd.read_csv(out_dir / "d_sep.csv")
    assert list(d_sep.columns) == ["model", "d_sep", "p", "phylo"]
    best = pd.read_csv(out_dir / "best.csv")
    assert set(zip(best["from"], best["to"])) == {("X", "Y"), ("Y", "Z")}

    manifest = json.loads((out_dir / "run_manifest.json").read_text())
    assert manifest["artifacts"]["run_id"] == "test"
    assert manifest["artifacts"]["best_model"] == "chain"
    assert manifest["config_hash"].startswith("sha256:")
    assert set(manifest["inputs"]) == {"data", "tree"}


def test_run_reports_analysis_errors(cfg_path: Path):
    bad = '{"analysis": {"order": ["X", "Y", "Nope"]}}'
    result = runner.invoke(app, ["run", "-c", str(cfg_path), "--override", bad, "--run-id", "bad"])
    assert result.exit_code == 1


def test_effective_config_yaml(cfg_path: Path, tmp_path: Path):
    out = tmp_path / "resolved.yaml"
    result = runner.invoke(app, ["effective-config", "-c", str(cfg_path), "--out", str(out)])
    assert result.exit_code == 0, result.output
    resolved = yaml.safe_load(out.read_text())
    assert resolved["analysis"]["method"] == "REML"
    assert resolved["logging"]["level"] == "INFO"


def test_version(cfg_path: Path):
    result = runner.invoke(app, ["version", "-c", str(cfg_path)])
    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["phylopath_version"]
    assert payload["config_hash"].startswith("sha256:")
