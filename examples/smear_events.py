"""Library API example: build a detector in code, smear events, write tables.

Run from repository root without installation:
    PYTHONPATH=src python examples/smear_events.py
"""

from __future__ import annotations

from pathlib import Path

from detsmear import (
    AcceptanceZone,
    Bremsstrahlung,
    ConfusionMatrixIdentifier,
    Detector,
    Device,
    Kinematic,
    RadialTracker,
    SmearingPipeline,
    SpeciesFilter,
)
from detsmear.io import load_events_json, write_event_table, write_smeared_table


def build_detector() -> Detector:
    """Barrel tracker, backward EM calorimeter, radiator and a pi/K/p PID table."""
    tracker = RadialTracker(
        magnetic_field=1.7,
        n_layers=6,
        resolution=1e-5,
        radiation_length=8.0,
        inner_radius=0.036,
        outer_radius=0.42,
        z_min=-1.1,
        z_max=1.1,
        angular_resolution=0.0005,
        name="barrel",
    )
    ecal = Device(
        {Kinematic.E: "sqrt(0.02^2 * E^2 + 0.02^2 * E)", Kinematic.THETA: "0.001", Kinematic.PHI: "0.001"},
        acceptance=AcceptanceZone.from_bounds(eta=(-3.5, -1.0)),
        species_filter=SpeciesFilter.build(genre="em"),
        name="eemc",
    )
    hcal = Device(
        {Kinematic.E: "sqrt(0.5^2 * E + 0.1^2 * E^2)"},
        acceptance=AcceptanceZone.from_bounds(eta=(-1.0, 3.5)),
        species_filter=SpeciesFilter.build(genre="hadron", charge="neutral"),
        name="hcal",
    )
    pid = ConfusionMatrixIdentifier.from_matrix(
        species=(211, 321, 2212),
        matrix=[[0.95, 0.04, 0.01], [0.05, 0.90, 0.05], [0.01, 0.04, 0.95]],
    )
    return Detector(devices=(tracker, ecal, hcal, Bremsstrahlung(radiation_lengths=0.02)), pid=pid)


def main() -> int:
    """Smear `examples/events.json` on two threads and write parquet tables."""
    events = load_events_json("examples/events.json")
    smeared = SmearingPipeline(build_detector()).run(events, seed=2024, workers=2)
    particles_out = Path("examples/smeared_particles.parquet")
    events_out = Path("examples/smeared_events.parquet")
    write_smeared_table(particles_out, smeared)
    write_event_table(events_out, smeared)
    n_valid = sum(evt.kinematics.valid for evt in smeared)
    print(f"Smeared {len(smeared)} events ({n_valid} with valid kinematics) into {particles_out} and {events_out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
