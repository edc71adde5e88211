"""Example custom callback: compare scattered-lepton energy with the generator record."""

from __future__ import annotations

import json
import math
from pathlib import Path

from detsmear.io import load_events_json


def process(events, context):
    """Relative energy residuals of the scattered lepton, matched by generator index."""
    truth = {evt.event_id: evt for evt in load_events_json(context["events_path"])}
    residuals = []
    for evt in events:
        lepton = evt.scattered_lepton
        if lepton is None or lepton.e is None:
            continue
        true_lepton = truth[evt.event_id].particle(lepton.index)
        residuals.append((lepton.e - true_lepton.e) / true_lepton.e)
    n = len(residuals)
    mean = sum(residuals) / n if n else None
    rms = math.sqrt(sum(r * r for r in residuals) / n) if n else None
    payload = {"n_leptons": n, "mean_relative_residual": mean, "rms_relative_residual": rms}
    out = Path(context["output_path"]).with_name("lepton_resolution.json")
    out.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    print(f"Wrote {out}")
