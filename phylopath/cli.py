# FILE: phylopath/cli.py
# =============================================================================
# phylopath — Typer CLI
#
# Commands
# --------
#   run               Load data + tree + model set from a YAML config, run the
#                     path analysis, print the ranking and write CSV artifacts
#   effective-config  Emit the fully resolved config (after overrides) to JSON or YAML
#   version           Package version + config hash
#
# Logging controls on `run`:
#    --run-id auto|<str>   → stamps file/JSON logs with a stable run id (auto = UTC timestamp)
#    --log-level LEVEL     → overrides config.logging.level (INFO|DEBUG|...)
#    --log-file/--no-log-file, --log-json/--no-log-json → force on/off regardless of config
#
# Artifacts (in run.output_dir)
# -----------------------------
#   summary.csv        model ranking (k, q, C, p, CICc, delta_CICc, l, w)
#   d_sep.csv          every model's d-separation statements with p and phylo parameter
#   best.csv           standardized paths of the top model
#   average.csv        standardized paths averaged over models with delta CICc < cut_off
#   run_manifest.json  timestamps, config hash, input hashes, artifact paths
#
# Usage examples
# --------------
#   python -m phylopath run -c configs/example.yaml --log-file
#   python -m phylopath run -c configs/example.yaml -o '{"analysis": {"cor_fun": "brownian"}}'
#   python -m phylopath effective-config -c configs/example.yaml --out resolved.yaml
# =============================================================================

from __future__ import annotations

import hashlib
import json
import platform
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import pandas as pd
import typer
import yaml
from rich.console import Console
from rich.table import Table

from . import get_version
from .core import PhylopathResult, phylo_path
from .dag import define_model_set
from .errors import PhylopathError, ValidationError
from .tree import PhyloTree
from .utils.config_loader import deep_merge, resolve_config
from .utils.logging_utils import get_logger, init_logging

app = typer.Typer(add_completion=False, help="phylopath — Phylogenetic path analysis CLI")
console = Console()

# =============================================================================
# Helpers — hashing, manifest
# =============================================================================


def _utc_now(fmt: str = "%Y-%m-%dT%H:%M:%SZ") -> str:
    return datetime.now(timezone.utc).strftime(fmt)


def _sha256(source: Union[bytes, Path]) -> str:
    """Digest of raw bytes or of a file's contents, prefixed "sha256:"."""
    if isinstance(source, bytes):
        return "sha256:" + hashlib.sha256(source).hexdigest()
    h = hashlib.sha256()
    with source.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return "sha256:" + h.hexdigest()


def _dump_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2), encoding="utf-8")


def _record_run_manifest(
    out_dir: Path,
    artifacts: Dict[str, Any],
    cfg_path: Optional[Path],
    cfg_obj: Dict[str, Any],
) -> Path:
    analysis = cfg_obj.get("analysis", {})
    inputs = {}
    for key in ("data", "tree"):
        value = analysis.get(key)
        if value and Path(value).exists():
            inputs[key] = {"path": str(Path(value).as_posix()), "sha256": _sha256(Path(value))}
    run_info = {
        "phylopath_version": get_version(),
        "timestamp_utc": _utc_now(),
        "config_path": str(cfg_path.as_posix()) if cfg_path else None,
        "config_hash": _sha256(cfg_path) if cfg_path and cfg_path.exists() else None,
        "inputs": inputs,
        "artifacts": artifacts,
        "environment": {"python": sys.version.split()[0], "platform": platform.platform()},
    }
    path = out_dir / "run_manifest.json"
    _dump_json(path, run_info)
    return path


# =============================================================================
# Logging bootstrap
# =============================================================================


def _bootstrap_logging(cfg: Dict[str, Any],
                       run_id: Optional[str],
                       level: Optional[str],
                       to_file: Optional[bool],
                       to_json: Optional[bool]) -> Tuple[Dict[str, Any], str]:
    """
    Apply CLI logging overrides on top of config.logging, resolve the run id
    ("auto" → UTC timestamp) and initialize logging.
    """
    flags = {"level": level, "to_file": to_file, "to_json": to_json}
    merged = deep_merge(cfg, {"logging": {k: v for k, v in flags.items() if v is not None}})
    rid = _utc_now("%Y%m%d_%H%M%S") if (run_id == "auto" or not run_id) else run_id
    init_logging(merged, run_id=rid)
    log = get_logger("phylopath.cli")
    log.info("[RunMeta] run_id=%s cfg_hash=%s", rid, _sha256(json.dumps(merged, sort_keys=True).encode("utf-8")))
    return merged, rid


# =============================================================================
# Inputs & outputs
# =============================================================================


def _load_inputs(cfg: Dict[str, Any]) -> Tuple[Dict[str, Any], pd.DataFrame, PhyloTree]:
    analysis = cfg["analysis"]
    for key in ("data", "tree"):
        if not analysis.get(key):
            raise ValidationError(f"Config is missing analysis.{key}.")
    if not cfg.get("models"):
        raise ValidationError("Config defines no models.")

    species_col = analysis.get("species_column")
    data = pd.read_csv(analysis["data"], index_col=species_col if species_col else 0)
    tree = PhyloTree.from_frame(pd.read_csv(analysis["tree"], dtype={"parent": str, "child": str}))
    models = define_model_set(cfg["models"], common=cfg.get("common") or None)
    return models, data, tree


def _summary_table(table: pd.DataFrame) -> Table:
    t = Table(title="Model ranking", show_lines=False)
    for col in table.columns:
        t.add_column(str(col), justify="left" if col == "model" else "right")
    for _, row in table.iterrows():
        cells = []
        for col in table.columns:
            v = row[col]
            cells.append(f"{v:.3g}" if isinstance(v, float) else str(v))
        t.add_row(*cells)
    return t


def _d_sep_frame(result: PhylopathResult) -> pd.DataFrame:
    frames = []
    for name, table in result.d_sep.items():
        frame = table.drop(columns="model")
        frame.insert(0, "model", name)
        frames.append(frame)
    return pd.concat(frames, ignore_index=True)


# =============================================================================
# Commands
# =============================================================================


@app.command("version")
def cli_version(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to analysis config YAML.")
):
    cfg_hash = None
    if config:
        p = Path(config)
        if p.exists():
            cfg_hash = _sha256(p)
    payload = {"phylopath_version": get_version(), "config_hash": cfg_hash, "timestamp_utc": _utc_now()}
    typer.echo(json.dumps(payload, indent=2))


@app.command("effective-config")
def cli_effective_config(
    config: str = typer.Option(..., "--config", "-c", help="Path to YAML config."),
    overrides: Optional[str] = typer.Option(None, "--override", "-o", help="JSON string of overrides."),
    out: Optional[str] = typer.Option(None, "--out", help="Write resolved config to this path (json|yaml)."),
):
    """
    Render the fully-resolved config (after JSON overrides).
    """
    cfg = resolve_config(config, overrides_json=overrides)
    if out:
        outp = Path(out)
        outp.parent.mkdir(parents=True, exist_ok=True)
        if outp.suffix.lower() in (".yml", ".yaml"):
            outp.write_text(yaml.safe_dump(cfg, sort_keys=False), encoding="utf-8")
        else:
            _dump_json(outp, cfg)
        typer.echo(f"Wrote resolved config → {outp.as_posix()}")
    else:
        typer.echo(json.dumps(cfg, indent=2))


@app.command("run")
def cli_run(
    config: str = typer.Option(..., "--config", "-c", help="Path to analysis config YAML."),
    overrides: Optional[str] = typer.Option(None, "--override", "-o", help="JSON string of overrides."),
    run_id: str = typer.Option("auto", "--run-id", help='Run identifier ("auto" => UTC timestamp).'),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override logging level (e.g. INFO, DEBUG)."),
    log_file: Optional[bool] = typer.Option(None, "--log-file/--no-log-file", help="Enable/disable file logging."),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--no-log-json", help="Enable/disable JSONL logging."),
):
    """
    Run a phylogenetic path analysis as described by the config.
    """
    cfg = resolve_config(config, overrides_json=overrides)
    out_dir = Path(cfg["run"]["output_dir"]).resolve()
    out_dir.mkdir(parents=True, exist_ok=True)

    cfg, rid = _bootstrap_logging(cfg, run_id, log_level, log_file, log_json)
    log = get_logger("phylopath.cli")
    log.info("=== phylopath :: RUN :: run_id=%s ===", rid)
    analysis = cfg["analysis"]

    try:
        models, data, tree = _load_inputs(cfg)
        result = phylo_path(
            models,
            data,
            tree,
            cor_fun=analysis.get("cor_fun"),
            order=analysis.get("order"),
            parallel=analysis.get("parallel"),
            na_rm=bool(analysis.get("na_rm", True)),
            method=str(analysis.get("method", "REML")),
        )
        table = result.summary()
        best_model = result.best()
        averaged = result.average(
            cut_off=float(analysis.get("cut_off", 2.0)),
            method=str(analysis.get("average_method", "conditional")),
        )
    except PhylopathError as exc:
        log.error("Analysis failed: %s", exc)
        raise typer.Exit(code=1) from exc

    console.print(_summary_table(table))

    artifacts: Dict[str, Any] = {"run_id": rid}
    paths = {
        "summary": out_dir / "summary.csv",
        "d_sep": out_dir / "d_sep.csv",
        "best": out_dir / "best.csv",
        "average": out_dir / "average.csv",
    }
    table.to_csv(paths["summary"], index=False)
    _d_sep_frame(result).to_csv(paths["d_sep"], index=False)
    best_model.to_frame().to_csv(paths["best"], index=False)
    averaged.to_frame().to_csv(paths["average"], index=False)
    artifacts.update({k: str(p.as_posix()) for k, p in paths.items()})
    artifacts["best_model"] = str(table["model"].iloc[0])
    artifacts["n_species"] = len(result.data)
    artifacts["n_regressions"] = result.n_fits

    manifest = _record_run_manifest(out_dir=out_dir, artifacts=artifacts, cfg_path=Path(config), cfg_obj=cfg)
    log.info("Run completed. Artifacts manifest → %s", manifest.as_posix())


# =============================================================================
# Entrypoint
# =============================================================================


@app.callback(invoke_without_command=False)
def _root() -> None:
    """phylopath — CLI entrypoint."""
    return


def main() -> None:
    app()


if __name__ == "__main__":
    main()
