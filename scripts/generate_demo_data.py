from __future__ import annotations

import argparse
import csv
import json
from datetime import date
from pathlib import Path
from typing import Any, Iterable

from perflab.demo import build_demo_tables
from perflab.store import COLUMNS

ROOT = Path(__file__).resolve().parents[1]
DEFAULT_OUT = ROOT / "demo"


def _write_json(path: Path, tables: dict[str, list[dict[str, Any]]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(tables, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def _write_csv(path: Path, collection: str, rows: Iterable[dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(COLUMNS[collection]), extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow(row)


def export_demo(out_dir: Path, anchor: date | None = None) -> dict[str, int]:
    """Write the demo dataset as one JSON document plus one CSV per collection."""
    tables = build_demo_tables(anchor)
    _write_json(out_dir / "demo_metrics.json", tables)
    for collection, rows in tables.items():
        _write_csv(out_dir / f"{collection}.csv", collection, rows)
    return {collection: len(rows) for collection, rows in tables.items()}


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Export the synthetic demo squad and metrics.")
    parser.add_argument(
        "--anchor",
        type=date.fromisoformat,
        default=None,
        help="Day after the last demo session (YYYY-MM-DD). Defaults to today.",
    )
    parser.add_argument("--out", type=Path, default=DEFAULT_OUT, help="Destination directory.")
    args = parser.parse_args(argv)

    counts = export_demo(args.out, args.anchor)
    total = sum(counts.values())
    print(f"Wrote {total} demo rows across {len(counts)} collections to {args.out}")


if __name__ == "__main__":
    main()
