"""Utility script to inspect/plot table outputs produced by the smearing CLI."""

from __future__ import annotations

import argparse
from pathlib import Path


def _require_pandas():
    """Import pandas with an actionable error if not installed."""
    try:
        import pandas as pd  # type: ignore
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            "pandas is required. Install with: pip install pandas pyarrow"
        ) from exc
    return pd


def load_table(path: str):
    """Load table data from parquet/csv/pickle into a pandas DataFrame."""
    pd = _require_pandas()
    p = Path(path)
    suffix = p.suffix.lower()
    if suffix == ".parquet":
        return pd.read_parquet(p)
    if suffix == ".csv":
        return pd.read_csv(p)
    if suffix in (".pkl", ".pickle"):
        return pd.read_pickle(p)
    raise ValueError("Supported input formats: .parquet, .csv, .pkl")


def main(argv: list[str] | None = None) -> int:
    """Print the first rows of a particle or event table; optionally plot reconstructed vs true Q2."""
    parser = argparse.ArgumentParser(description="Inspect smeared particle or event table.")
    parser.add_argument("--input", required=True, help="Path to .parquet/.csv/.pkl output.")
    parser.add_argument("--head", type=int, default=10, help="Rows to print.")
    parser.add_argument(
        "--plot",
        action="store_true",
        help="Event tables only: scatter of reconstructed q2 vs generator true_Q2 (png).",
    )
    args = parser.parse_args(argv)

    df = load_table(args.input)
    print(df.head(args.head).to_string(index=False))
    print(f"\nRows={len(df)}  Columns={len(df.columns)}")
    if "kinematics_valid" in df.columns:
        print(f"Events with valid kinematics: {int(df['kinematics_valid'].sum())}/{len(df)}")

    if args.plot:
        if "true_Q2" not in df.columns:
            print("No true_Q2 column (not an event table with generator kinematics); skipping plot.")
            return 0
        try:
            import matplotlib.pyplot as plt  # type: ignore
        except ModuleNotFoundError:
            print("matplotlib not installed; skipping plot.")
            return 0
        out = Path(args.input).with_suffix(".png")
        valid = df[df["kinematics_valid"]]
        ax = valid.plot.scatter(x="true_Q2", y="q2", alpha=0.6, logx=True, logy=True)
        ax.set_title(f"reconstructed vs true Q2 ({valid['method'].iloc[0] if len(valid) else 'n/a'})")
        plt.tight_layout()
        plt.savefig(out, dpi=120)
        print(f"Saved plot: {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
