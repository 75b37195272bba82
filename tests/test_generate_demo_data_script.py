from __future__ import annotations

import csv
import json
from pathlib import Path


def test_generate_demo_data_writes_json_and_csv(tmp_path: Path, capsys) -> None:
    import scripts.generate_demo_data as gd

    gd.main(["--anchor", "2026-02-02", "--out", str(tmp_path)])

    tables = json.loads((tmp_path / "demo_metrics.json").read_text(encoding="utf-8"))
    assert len(tables["athletes"]) == 15
    assert tables["training_sessions"][-1]["session_date"] == "2026-02-01"

    with (tmp_path / "gps_metrics.csv").open(newline="", encoding="utf-8") as handle:
        rows = list(csv.DictReader(handle))
    assert len(rows) == len(tables["gps_metrics"]) == 120
    assert rows[0]["recorded_at"].startswith("2026-01-20")

    assert "demo rows across 5 collections" in capsys.readouterr().out
