# FILE: causal_search/cli.py
# =============================================================================
# Causal Search Engine (CSE): Typer CLI (pipeline stages + direct search)
#
# Commands
# --------
#   version            Version + config hash
#   env                Interpreter / platform / numeric stack snapshot
#   algorithms         Registered algorithms and what they consume
#   effective-config   Fully resolved config (defaults <- YAML <- --override JSON)
#   ingest             Stage 1: CSV -> outputs/dataset.csv
#   discover           Stage 2: dataset -> outputs/graph.json + search_result.json
#   report             Stage 3: graph exports + report_summary.json
#   full-run           ingest -> discover -> report, then run_manifest.json
#   search             One-shot search on a CSV file, graph to stdout or --out
#
# Logging controls on every stage command:
#   --run-id auto|<str>, --log-level LEVEL, --log-file/--no-log-file, --log-json/--no-log-json
#
# Usage examples
# --------------
#   python -m causal_search full-run -c configs/search.yaml --run-id auto --log-file
#   python -m causal_search discover -c configs/search.yaml -o '{"search": {"algorithm": "grasp"}}'
#   python -m causal_search search data.csv --algorithm boss --num-starts 4 --seed 7 --format dot
# =============================================================================

from __future__ import annotations

import hashlib
import json
import platform
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import click
import typer
import yaml
from rich.console import Console
from rich.table import Table

from . import get_version, set_global_seed
from .discover import run_discover, search_dataframe
from .errors import CausalSearchError, ConfigurationError
from .ingest import clean_table, read_table, run_ingest
from .knowledge import Knowledge
from .report import edge_counts, run_report
from .search import list_algorithms
from .utils.config_loader import load_yaml, resolve_config, search_params, with_defaults
from .utils.graph_io import FORMATS, to_dot, to_endpoint_matrix, to_json, to_text
from .utils.logging_utils import add_run_metadata, get_logger, init_logging

app = typer.Typer(add_completion=False, help="Causal Search Engine (CSE): Pipeline CLI")
console = Console()

# =============================================================================
# Helpers: time, hashing, IO
# =============================================================================


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _sha256_bytes(b: bytes) -> str:
    return "sha256:" + hashlib.sha256(b).hexdigest()


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return "sha256:" + h.hexdigest()


def _write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2, sort_keys=False, default=str), encoding="utf-8")


def _env_snapshot_dict() -> Dict[str, Any]:
    import joblib
    import numpy
    import pandas
    import scipy

    return {
        "python": sys.version.replace("\n", " "),
        "platform": platform.platform(),
        "executable": sys.executable,
        "cwd": str(Path.cwd()),
        "cse": get_version(),
        "numpy": numpy.__version__,
        "scipy": scipy.__version__,
        "pandas": pandas.__version__,
        "joblib": joblib.__version__,
    }


def _record_run_manifest(
    out_dir: Path,
    artifacts: Dict[str, Any],
    cfg_path: Optional[Path],
    cfg_obj: Dict[str, Any],
) -> Path:
    run_info = {
        "cse_version": get_version(),
        "timestamp_utc": _utc_now_iso(),
        "config_path": str(cfg_path.as_posix()) if cfg_path else None,
        "config_hash": _sha256_file(cfg_path) if cfg_path and cfg_path.exists() else None,
        "resolved_config_hash": _sha256_bytes(json.dumps(cfg_obj, sort_keys=True, default=str).encode("utf-8")),
        "artifacts": artifacts,
        "environment": _env_snapshot_dict(),
    }
    path = out_dir / "run_manifest.json"
    _write_json(path, run_info)
    return path


def _fail(msg: str, code: int = 2) -> None:
    typer.secho(msg, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


# =============================================================================
# Run-id & Logging overrides
# =============================================================================


def _git_short_hash() -> Optional[str]:
    try:
        out = subprocess.check_output(["git", "rev-parse", "--short", "HEAD"], stderr=subprocess.DEVNULL)
    except (OSError, subprocess.CalledProcessError):
        return None
    return out.decode("utf-8").strip() or None


def _auto_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    g = _git_short_hash()
    return f"{ts}_{g}" if g else ts


def _merge_logging_overrides(cfg: Dict[str, Any],
                             level: Optional[str],
                             to_file: Optional[bool],
                             to_json: Optional[bool]) -> Dict[str, Any]:
    c = dict(cfg or {})
    lc = dict(c.get("logging", {}) or {})
    if level:
        lc["level"] = level
    if to_file is not None:
        lc["to_file"] = bool(to_file)
    if to_json is not None:
        lc["to_json"] = bool(to_json)
    lc.setdefault("dir", "logs")
    c["logging"] = lc
    return c


def _bootstrap_logging(cfg: Dict[str, Any],
                       run_id: Optional[str],
                       level: Optional[str],
                       to_file: Optional[bool],
                       to_json: Optional[bool]) -> Tuple[Dict[str, Any], str]:
    """
    Apply CLI logging overrides, compute run_id (auto|str), and initialize logging.
    Returns (merged_cfg, resolved_run_id).
    """
    merged = _merge_logging_overrides(cfg, level, to_file, to_json)
    rid = _auto_run_id() if (run_id == "auto" or not run_id) else run_id
    init_logging(merged, run_id=rid)
    add_run_metadata(get_logger("cse.cli"), rid,
                     _sha256_bytes(json.dumps(merged, sort_keys=True, default=str).encode("utf-8")))
    return merged, rid


def _resolve_or_fail(config: Optional[str], overrides: Optional[str]) -> Dict[str, Any]:
    try:
        return resolve_config(config, overrides_json=overrides)
    except FileNotFoundError as e:
        _fail(str(e))
    except (ConfigurationError, yaml.YAMLError) as e:
        _fail(f"Invalid configuration: {e}")


# =============================================================================
# Core CLI Commands
# =============================================================================


@app.command("version")
def cli_version(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to search config YAML.")
):
    cfg_hash = None
    if config:
        p = Path(config)
        if p.exists():
            cfg_hash = _sha256_file(p)
    payload = {"cse_version": get_version(), "config_hash": cfg_hash, "timestamp_utc": _utc_now_iso()}
    typer.echo(json.dumps(payload, indent=2))


@app.command("env")
def cli_env():
    typer.echo(json.dumps(_env_snapshot_dict(), indent=2))


@app.command("algorithms")
def cli_algorithms():
    table = Table(title="Registered algorithms")
    for col in ("name", "score", "test", "knowledge", "output", "description"):
        table.add_column(col)
    for spec in list_algorithms():
        table.add_row(
            spec.algorithm.value,
            "yes" if spec.uses_score else "-",
            "yes" if spec.uses_test else "-",
            "yes" if spec.has_knowledge else "-",
            spec.output,
            spec.description,
        )
    console.print(table)


@app.command("effective-config")
def cli_effective_config(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config."),
    overrides: Optional[str] = typer.Option(None, "--override", "-o", help="JSON string of overrides."),
    out: Optional[str] = typer.Option(None, "--out", help="Write resolved config to this path (json|yaml)."),
):
    """
    Render the fully-resolved config (after JSON overrides).
    """
    cfg = _resolve_or_fail(config, overrides)
    if out:
        outp = Path(out)
        outp.parent.mkdir(parents=True, exist_ok=True)
        if outp.suffix.lower() in (".yml", ".yaml"):
            outp.write_text(yaml.safe_dump(cfg, sort_keys=False), encoding="utf-8")
        else:
            _write_json(outp, cfg)
        typer.echo(f"Wrote resolved config → {outp.as_posix()}")
    else:
        typer.echo(json.dumps(cfg, indent=2))


# ------------------------------- STAGES ---------------------------------------

STAGES: Dict[str, Callable[..., Dict[str, Any]]] = {
    "ingest": run_ingest,
    "discover": run_discover,
    "report": run_report,
}


def _run_stage(runner: Callable[..., Dict[str, Any]], cfg: Dict[str, Any], prev: Optional[Dict] = None):
    try:
        return runner(cfg, prev) if prev is not None else runner(cfg)
    except FileNotFoundError as e:
        _fail(str(e))
    except CausalSearchError as e:
        _fail(f"{type(e).__name__}: {e}")


@app.command("full-run")
def full_run(
    config: str = typer.Option(..., "--config", "-c", help="Path to search config YAML."),
    overrides: Optional[str] = typer.Option(None, "--override", "-o", help="JSON string of overrides."),
    resume_from: Optional[str] = typer.Option(None, "--resume-from", help="ingest|discover|report"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview stages without executing."),
    run_id: str = typer.Option("auto", "--run-id", help='Run identifier ("auto" => timestamp+git).'),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override logging level (e.g. INFO, DEBUG)."),
    log_file: Optional[bool] = typer.Option(None, "--log-file/--no-log-file", help="Enable/disable file logging."),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--no-log-json", help="Enable/disable JSONL logging."),
):
    cfg = _resolve_or_fail(config, overrides)
    out_dir = Path(cfg["run"]["output_dir"]).resolve()
    out_dir.mkdir(parents=True, exist_ok=True)

    cfg, rid = _bootstrap_logging(cfg, run_id, log_level, log_file, log_json)
    log = get_logger("cse.cli")
    log.info("=== CSE :: FULL RUN :: run_id=%s ===", rid)

    order = list(STAGES)
    if resume_from:
        resume_from = resume_from.strip().lower()
        if resume_from not in order:
            raise typer.BadParameter("resume-from must be one of: ingest|discover|report")
        order = order[order.index(resume_from):]

    if dry_run:
        typer.echo(json.dumps({"plan": order, "resume_from": resume_from, "dry_run": True, "run_id": rid}, indent=2))
        return

    set_global_seed((cfg.get("run") or {}).get("random_seed"))
    artifacts: Dict[str, Any] = {"run_id": rid}
    prev = None
    for stage in order:
        prev = _run_stage(STAGES[stage], cfg, prev)
        artifacts[stage] = prev

    manifest = _record_run_manifest(out_dir, artifacts, Path(config), cfg)
    log.info("Full run completed. Artifacts manifest → %s", manifest.as_posix())


def _stage_entry(
    stage_name: str,
    config: str,
    overrides: Optional[str],
    dry_run: bool,
    run_id: str,
    log_level: Optional[str],
    log_file: Optional[bool],
    log_json: Optional[bool],
):
    cfg = _resolve_or_fail(config, overrides)
    cfg, rid = _bootstrap_logging(cfg, run_id, log_level, log_file, log_json)
    if dry_run:
        typer.echo(json.dumps({"stage": stage_name, "dry_run": True, "run_id": rid}, indent=2))
        return
    set_global_seed((cfg.get("run") or {}).get("random_seed"))
    return _run_stage(STAGES[stage_name], cfg)


@app.command("ingest")
def cli_ingest(
    config: str = typer.Option(..., "--config", "-c"),
    overrides: Optional[str] = typer.Option(None, "--override", "-o"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without executing."),
    run_id: str = typer.Option("auto", "--run-id", help='Run identifier ("auto" => timestamp+git).'),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
    log_file: Optional[bool] = typer.Option(None, "--log-file/--no-log-file"),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--no-log-json"),
):
    _stage_entry("ingest", config, overrides, dry_run, run_id, log_level, log_file, log_json)


@app.command("discover")
def cli_discover(
    config: str = typer.Option(..., "--config", "-c"),
    overrides: Optional[str] = typer.Option(None, "--override", "-o"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without executing."),
    run_id: str = typer.Option("auto", "--run-id"),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
    log_file: Optional[bool] = typer.Option(None, "--log-file/--no-log-file"),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--no-log-json"),
):
    _stage_entry("discover", config, overrides, dry_run, run_id, log_level, log_file, log_json)


@app.command("report")
def cli_report(
    config: str = typer.Option(..., "--config", "-c"),
    overrides: Optional[str] = typer.Option(None, "--override", "-o"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without executing."),
    run_id: str = typer.Option("auto", "--run-id"),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
    log_file: Optional[bool] = typer.Option(None, "--log-file/--no-log-file"),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--no-log-json"),
):
    _stage_entry("report", config, overrides, dry_run, run_id, log_level, log_file, log_json)


# ------------------------------- DIRECT SEARCH --------------------------------


def _render(graph, fmt: str) -> str:
    if fmt == "txt":
        return to_text(graph)
    if fmt == "dot":
        return to_dot(graph)
    if fmt == "json":
        return json.dumps(to_json(graph), indent=2)
    return to_endpoint_matrix(graph).to_csv()


@app.command("search")
def cli_search(
    data: Path = typer.Argument(..., help="CSV file, one numeric column per variable."),
    algorithm: str = typer.Option("boss", "--algorithm", "-a", help="pc | fci | boss | grasp | bfci"),
    num_starts: int = typer.Option(1, "--num-starts", help="Restarts for permutation search."),
    depth: int = typer.Option(-1, "--depth", help="Max parents / conditioning set size (-1 = unbounded)."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for shuffled restarts."),
    knowledge_file: Optional[Path] = typer.Option(None, "--knowledge", "-k", help="YAML with a knowledge: section."),
    penalty_discount: float = typer.Option(1.0, "--penalty-discount", help="BIC penalty multiplier."),
    alpha: float = typer.Option(0.01, "--alpha", help="Significance level for the independence test."),
    n_jobs: int = typer.Option(1, "--n-jobs", help="Worker threads (restarts / BES re-evaluation)."),
    fmt: str = typer.Option("txt", "--format", "-f", click_type=click.Choice(list(FORMATS)),
                            help="Output format."),
    out: Optional[Path] = typer.Option(None, "--out", help="Write the graph here instead of stdout."),
    log_level: str = typer.Option("WARNING", "--log-level"),
):
    """Run one search directly on a CSV file."""
    init_logging({"logging": {"level": log_level}})
    try:
        df = clean_table(read_table(data))
    except FileNotFoundError as e:
        _fail(str(e))
    except ConfigurationError as e:
        _fail(f"ConfigurationError: {e}")

    knowledge = None
    if knowledge_file is not None:
        spec = load_yaml(knowledge_file)
        knowledge = Knowledge.from_dict(spec.get("knowledge", spec), [str(c) for c in df.columns])

    cfg = with_defaults({"search": {
        "algorithm": algorithm,
        "num_starts": num_starts,
        "depth": depth,
        "n_jobs": n_jobs,
        "score": {"penalty_discount": penalty_discount},
        "test": {"alpha": alpha},
    }, "run": {"random_seed": seed}})
    try:
        result = search_dataframe(df, search_params(cfg), knowledge)
    except CausalSearchError as e:
        _fail(f"{type(e).__name__}: {e}")

    text = _render(result.graph, fmt)
    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text, encoding="utf-8")
    else:
        typer.echo(text)

    table = Table(title=f"{result.algorithm} — {result.status.value}")
    table.add_column("metric")
    table.add_column("value")
    table.add_row("score", "NA" if result.score is None else f"{result.score:.6g}")
    table.add_row("edges", str(result.graph.num_edges()))
    for kind, n in edge_counts(result.graph).items():
        table.add_row(f"  {kind}", str(n))
    table.add_row("elapsed (s)", f"{result.elapsed:.3f}")
    Console(stderr=True).print(table)


# =============================================================================
# Entrypoint
# =============================================================================


@app.callback(invoke_without_command=False)
def _root() -> None:
    """Causal Search Engine (CSE): CLI entrypoint."""
    return


def main() -> None:
    app()


if __name__ == "__main__":
    main()
