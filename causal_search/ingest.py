"""
Stage 1 (Ingest): tabular data -> cleaned dataset

This stage:
- Reads the CSV named by data.path (pandas).
- Keeps data.columns when given (all columns otherwise).
- Drops rows with missing values when data.dropna is true.
- Rejects non-numeric columns.
- Writes {output_dir}/dataset.csv and {output_dir}/dataset_summary.json.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from .errors import ConfigurationError
from .utils.logging_utils import get_logger


def read_table(path: Path) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")
    return pd.read_csv(path)


def clean_table(df: pd.DataFrame, columns: Optional[List[str]] = None, dropna: bool = True) -> pd.DataFrame:
    """Select columns, check they are numeric, handle missing values."""
    if columns:
        missing = [c for c in columns if c not in df.columns]
        if missing:
            raise ConfigurationError(f"Columns not found in data: {missing}")
        df = df[list(columns)]
    non_numeric = [c for c in df.columns if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise ConfigurationError(f"Non-numeric columns are not supported: {non_numeric}")
    if dropna:
        df = df.dropna(axis=0, how="any")
    elif df.isna().any().any():
        raise ConfigurationError("Data contains missing values and data.dropna is false.")
    return df.rename(columns=str).reset_index(drop=True)


def summarize(df: pd.DataFrame, n_raw: int) -> Dict:
    return {
        "rows": int(len(df)),
        "rows_dropped": int(n_raw - len(df)),
        "columns": list(df.columns),
        "means": {c: float(df[c].mean()) for c in df.columns} if len(df) else {},
        "stds": {c: float(df[c].std(ddof=1)) for c in df.columns} if len(df) > 1 else {},
    }


def run_ingest(cfg: Dict) -> Dict:
    """Run the ingest stage. Returns a simple artifact dict."""
    log = get_logger("cse.ingest")
    out_dir = Path(cfg["run"]["output_dir"]).resolve()
    out_dir.mkdir(parents=True, exist_ok=True)

    data_cfg = cfg.get("data") or {}
    if not data_cfg.get("path"):
        raise ConfigurationError("data.path is not set.")
    raw = read_table(Path(data_cfg["path"]))
    df = clean_table(raw, data_cfg.get("columns"), bool(data_cfg.get("dropna", True)))

    dataset_path = out_dir / "dataset.csv"
    df.to_csv(dataset_path, index=False)
    summary = summarize(df, len(raw))
    summary_path = out_dir / "dataset_summary.json"
    summary_path.write_text(json.dumps(summary, indent=2), encoding="utf-8")

    log.info("Ingest kept %d rows x %d columns (%d dropped) → %s",
             summary["rows"], len(df.columns), summary["rows_dropped"], dataset_path)
    return {
        "stage": "ingest",
        "dataset_file": str(dataset_path),
        "summary_file": str(summary_path),
        "rows": summary["rows"],
        "columns": summary["columns"],
    }
