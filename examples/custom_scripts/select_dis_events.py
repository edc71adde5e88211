"""Example custom callback: select events in a Q2/y window and dump their kinematics."""

from __future__ import annotations

import json
from pathlib import Path


def process(events, context):
    """Keep events with valid kinematics, Q2 > 1 GeV^2 and 0.01 < y < 0.95."""
    selected = [
        evt
        for evt in events
        if evt.kinematics.valid and evt.kinematics.q2 > 1.0 and 0.01 < evt.kinematics.y < 0.95
    ]
    payload = {
        "n_events": len(events),
        "n_selected": len(selected),
        "selected": [
            {
                "event_id": evt.event_id,
                "method": evt.kinematics.method,
                "q2": evt.kinematics.q2,
                "x": evt.kinematics.x,
                "y": evt.kinematics.y,
                "true_kinematics": dict(evt.true_kinematics),
            }
            for evt in selected
        ],
    }
    out = Path(context["output_path"]).with_name("selected_events.json")
    out.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    print(f"Wrote {out}")
