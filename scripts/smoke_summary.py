#!/usr/bin/env python3
"""Generate a smoke summary CSV of the layers each mode would draw for a snapshot.

Writes: reports/layer_summary.csv
"""
from pathlib import Path
import pandas as pd
import sys

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / 'src'))

from data.report_feed import ReportFeed  # noqa: E402
from layer_composer import compose  # noqa: E402
from map_config import load_settings  # noqa: E402
from mode_state import Mode, Toggles  # noqa: E402
from utils.exceptions import IncidentMapException  # noqa: E402

OUT = ROOT / 'reports' / 'layer_summary.csv'

TOGGLE_CASES = [
    Toggles(hexagon_on=True, scatterplot_on=False),
    Toggles(hexagon_on=False, scatterplot_on=True),
    Toggles(hexagon_on=True, scatterplot_on=True),
]


def _row_count(data):
    if isinstance(data, dict):
        return len(data.get('features', []))
    return len(data)


def summarise(data):
    rows = []
    for mode in Mode:
        cases = TOGGLE_CASES if mode is Mode.REPORTS else [Toggles()]
        for toggles in cases:
            for position, layer in enumerate(compose(mode, toggles, data)):
                rows.append({
                    'mode': mode.name.lower(),
                    'hexagon_on': toggles.hexagon_on,
                    'scatterplot_on': toggles.scatterplot_on,
                    'position': position,
                    'layer_id': layer.id,
                    'layer_type': layer.type,
                    'rows': _row_count(layer.data),
                    'pickable': layer.pickable,
                })
    return rows


def main():
    try:
        data = ReportFeed(load_settings()).load_snapshot()
    except IncidentMapException as e:
        print(f'Could not load snapshot: {e}', file=sys.stderr)
        return 2
    rows = summarise(data)
    if not rows:
        print('No layers composed; nothing to report.', file=sys.stderr)
        return 2
    df = pd.DataFrame(rows)
    OUT.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(OUT, index=False)
    print('Wrote', OUT)
    return 0

if __name__ == '__main__':
    raise SystemExit(main())
