"""Unit tests for JSON input loaders and tabular output writers."""

from __future__ import annotations

import json
import math
import tempfile
import unittest
from pathlib import Path

import pandas as pd

from detsmear import (
    Bremsstrahlung,
    CombinationPolicy,
    ConfigurationError,
    ConfusionMatrixIdentifier,
    Device,
    FormulaIdentifier,
    Kinematic,
    ParseError,
    PerfectDevice,
    PlanarTracker,
    RadialTracker,
    ReconstructionMethod,
    SmearingPipeline,
)
from detsmear.io import (
    build_detector,
    load_detector_json,
    load_events_json,
    load_pid_table_json,
    write_event_table,
    write_smeared_table,
)

PID_TABLE = {
    "species": [211, 321],
    "observed_species": [211, 321, 0],
    "bins": [
        {"p_min": 0, "p_max": 5, "matrix": [[0.9, 0.1, 0.0], [0.1, 0.9, 0.0]]},
        {"p_min": 5, "p_max": None, "matrix": [[0.5, 0.2, 0.3], [0.2, 0.5, 0.3]]},
    ],
}

TRACKER = {
    "magnetic_field": 1.5,
    "n_layers": 5,
    "resolution": 1e-5,
    "radiation_length": 10.0,
    "inner_radius": 0.1,
    "outer_radius": 0.5,
    "z_min": -1.0,
    "z_max": 1.0,
}

EVENTS = {
    "beams": {"lepton_energy": 10, "hadron_energy": 100},
    "events": [
        {
            "event_id": "evt42",
            "true_kinematics": {"Q2": 9.2, "x": 0.01},
            "particles": [
                {"index": 1, "status": 21, "id": "electron", "px": 0, "py": 0, "pz": -10, "e": 10},
                {"line": "2 1 11 1 0 0 2.68 0.0 -7.54 8.0 0.000511 0 0 0"},
                {"index": 3, "status": 1, "id": 211, "px": -2.68, "py": 0.0, "pz": -1.4, "E": 3.03, "m": 0.13957, "parent": 1},
            ],
        },
        {
            "beams": {"lepton_energy": 18, "hadron_energy": 275},
            "particles": ["1 1 22 0 0 0 1.0 0.0 2.0 2.2360679775 0.0 0 0 0"],
        },
    ],
}


def _write_json(directory: str, name: str, payload) -> Path:
    path = Path(directory) / name
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


class TestEventLoader(unittest.TestCase):
    """Validate the multi-event JSON input format."""

    def test_load_events_json_parses_event_payload(self) -> None:
        """Particles are read from objects or generator lines; beams default from the top level."""
        with tempfile.TemporaryDirectory() as tmpdir:
            first, second = load_events_json(_write_json(tmpdir, "events.json", EVENTS))
        self.assertEqual(first.event_id, "evt42")
        self.assertEqual([prt.index for prt in first.particles], [1, 2, 3])
        self.assertEqual(first.particles[0].species, 11)
        self.assertEqual(first.particles[1].parent_index, 1)
        self.assertEqual(first.particles[2].parent_index, 1)
        self.assertAlmostEqual(first.particles[2].e, 3.03, places=12)
        self.assertEqual(first.true_kinematics, {"Q2": 9.2, "x": 0.01})
        self.assertAlmostEqual(first.beams.lepton_energy, 10.0, places=12)
        self.assertEqual(second.event_id, "evt1")
        self.assertAlmostEqual(second.beams.lepton_energy, 18.0, places=12)
        self.assertEqual(second.particles[0].species, 22)

    def test_malformed_events(self) -> None:
        """Structural problems and bad generator lines raise ConfigurationError naming the entry."""
        bad_payloads = [
            {"events": {}},
            {"events": [{"particles": []}]},
            {"beams": {"lepton_energy": 10, "hadron_energy": 100}, "events": [{"particles": [{"index": 1, "id": 11}]}]},
            {"beams": {"lepton_energy": 10}, "events": [{"particles": []}]},
        ]
        with tempfile.TemporaryDirectory() as tmpdir:
            for payload in bad_payloads:
                with self.subTest(payload=payload):
                    with self.assertRaises(ConfigurationError):
                        load_events_json(_write_json(tmpdir, "bad.json", payload))
            line_payload = {"beams": {"lepton_energy": 10, "hadron_energy": 100}, "events": [{"particles": ["1 1 11"]}]}
            with self.assertRaises(ConfigurationError) as ctx:
                load_events_json(_write_json(tmpdir, "line.json", line_payload))
            self.assertIn("Particle 0", str(ctx.exception))
            object_line = {"beams": {"lepton_energy": 10, "hadron_energy": 100}, "events": [{"particles": [{"line": "1 1 x"}]}]}
            with self.assertRaises(ConfigurationError):
                load_events_json(_write_json(tmpdir, "object_line.json", object_line))
            broken = Path(tmpdir) / "broken.json"
            broken.write_text("{not json", encoding="utf-8")
            with self.assertRaises(ConfigurationError):
                load_events_json(broken)


class TestDetectorLoader(unittest.TestCase):
    """Validate detector configuration parsing."""

    def test_all_device_kinds_and_file_pid_table(self) -> None:
        """Every device kind is built; the PID table path resolves next to the config."""
        config = {
            "reconstruction": "jb",
            "combination": "last_writer",
            "devices": [
                {
                    "name": "ecal",
                    "resolution": {"E": "sqrt(0.1^2 * E + 0.01^2 * E^2)", "theta": 0.001},
                    "acceptance": {"eta": [-3.5, -1.0]},
                    "genre": "em",
                },
                {"kind": "perfect", "dimensions": ["phi"]},
                dict(TRACKER, kind="radial_tracker", name="barrel"),
                dict(TRACKER, kind="planar_tracker", z_min=0.5, z_max=1.5, inner_radius=0.02),
                {"kind": "bremsstrahlung", "radiation_lengths": 0.05},
            ],
            "pid": {"kind": "table", "path": "pid.json"},
        }
        with tempfile.TemporaryDirectory() as tmpdir:
            _write_json(tmpdir, "pid.json", PID_TABLE)
            detector = load_detector_json(_write_json(tmpdir, "detector.json", config))
        ecal, perfect, barrel, disks, brems = detector.devices
        self.assertIsInstance(ecal, Device)
        self.assertEqual(ecal.name, "ecal")
        self.assertEqual(set(ecal.resolutions), {Kinematic.E, Kinematic.THETA})
        self.assertIsInstance(perfect, PerfectDevice)
        self.assertEqual(perfect.dimensions, (Kinematic.PHI,))
        self.assertIsInstance(barrel, RadialTracker)
        self.assertIsInstance(disks, PlanarTracker)
        self.assertIsInstance(brems, Bremsstrahlung)
        self.assertTrue(brems.species_filter.allows(-11, 1.0))
        self.assertFalse(brems.species_filter.allows(211, 1.0))
        self.assertIsInstance(detector.pid, ConfusionMatrixIdentifier)
        self.assertIs(detector.reconstruction, ReconstructionMethod.JACQUET_BLONDEL)
        self.assertIs(detector.combination, CombinationPolicy.LAST_WRITER)

    def test_inline_pid_and_particle_overrides(self) -> None:
        """Inline tables, formula PID and custom particle masses are accepted."""
        inline = build_detector({"devices": [{"kind": "perfect"}], "pid": dict(PID_TABLE, kind="table")})
        self.assertIsInstance(inline.pid, ConfusionMatrixIdentifier)
        formula = build_detector(
            {
                "devices": [{"kind": "perfect"}],
                "pid": {"kind": "formula", "probability": "0.9", "species": ["kaon"]},
                "particles": [{"pdg_id": 9000211, "name": "X", "mass": 2.5, "charge": 1}],
            }
        )
        self.assertIsInstance(formula.pid, FormulaIdentifier)
        self.assertEqual(formula.pid.species, frozenset({321}))
        self.assertEqual(formula.particle_table.mass(9000211), 2.5)
        self.assertTrue(formula.particle_table.contains(211))

    def test_load_pid_table_json(self) -> None:
        """A null upper edge means an open-ended momentum bin."""
        with tempfile.TemporaryDirectory() as tmpdir:
            pid = load_pid_table_json(_write_json(tmpdir, "pid.json", PID_TABLE))
        self.assertEqual(pid.bins[-1].p_max, math.inf)
        self.assertEqual(pid.observed_species, (211, 321, 0))

    def test_invalid_configurations(self) -> None:
        """Bad entries raise ConfigurationError naming the problem."""
        bad_configs = [
            {},
            {"devices": []},
            {"devices": [{"kind": "magnet"}]},
            {"devices": [{"kind": "device"}]},
            {"devices": [{"resolution": {"mass": "0.1"}}]},
            {"devices": [{"resolution": {"E": "0.1"}, "acceptance": {"theta": [1.0]}}]},
            {"devices": [{"kind": "radial_tracker", "magnetic_field": 1.5}]},
            {"devices": [dict(TRACKER, kind="radial_tracker", n_layers=1)]},
            {"devices": [{"kind": "perfect"}], "pid": {"kind": "table", "species": [211], "matrix": [[0.5, 0.4]]}},
            {"devices": [{"kind": "perfect"}], "pid": {"kind": "magic"}},
            {"devices": [{"kind": "perfect"}], "reconstruction": "sigma"},
            {"devices": [{"kind": "perfect"}], "combination": "median"},
        ]
        for config in bad_configs:
            with self.subTest(config=config):
                with self.assertRaises(ConfigurationError):
                    build_detector(config)

    def test_bad_formula_raises_parse_error(self) -> None:
        """Formula syntax errors surface at load time."""
        with self.assertRaises(ParseError):
            build_detector({"devices": [{"resolution": {"E": "0.1 * (E"}}]})


class TestTableWriters(unittest.TestCase):
    """Validate per-particle and per-event output tables."""

    def setUp(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            events = load_events_json(_write_json(tmpdir, "events.json", EVENTS))
        detector = build_detector({"devices": [{"resolution": {"E": "0.05 * E", "theta": "0", "phi": "0"}}]})
        self.smeared = SmearingPipeline(detector).run(events, seed=11)

    def test_write_csv_tables(self) -> None:
        """CSV output carries values, sigmas, measured flags and validity flags."""
        with tempfile.TemporaryDirectory() as tmpdir:
            particles_path = Path(tmpdir) / "particles.csv"
            events_path = Path(tmpdir) / "events.csv"
            write_smeared_table(particles_path, self.smeared)
            write_event_table(events_path, self.smeared)
            particles = pd.read_csv(particles_path)
            events = pd.read_csv(events_path)
        self.assertEqual(list(particles["index"]), [2, 3, 1])
        self.assertTrue(particles["E_measured"].all())
        self.assertFalse(particles["pT_measured"].any())
        self.assertTrue(particles["pT"].notna().all())
        self.assertIn("theta_sigma", particles.columns)
        self.assertEqual(list(particles["is_scattered_lepton"]), [True, False, False])
        self.assertEqual(list(particles["parent_id"]), [11, 11, 0])
        for column in ("z", "pt_vs_gamma", "theta_gamma", "phi_prf", "x_f"):
            self.assertTrue(particles[column].isna().all(), column)
        self.assertEqual(list(events["event_id"]), ["evt42", "evt1"])
        self.assertIn("kinematics_valid", events.columns)
        self.assertAlmostEqual(events["true_Q2"][0], 9.2, places=12)

    def test_write_pickle_and_unsupported_suffix(self) -> None:
        """Pickle output round-trips; unknown suffixes are rejected."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "particles.pkl"
            write_smeared_table(path, self.smeared)
            frame = pd.read_pickle(path)
            self.assertEqual(len(frame), 3)
            with self.assertRaises(ValueError):
                write_smeared_table(Path(tmpdir) / "particles.txt", self.smeared)

    def test_seeded_runs_write_identical_tables(self) -> None:
        """The same seed gives the same smeared values."""
        detector = build_detector({"devices": [{"resolution": {"E": "0.05 * E"}}]})
        with tempfile.TemporaryDirectory() as tmpdir:
            events = load_events_json(_write_json(tmpdir, "events.json", EVENTS))
        first = SmearingPipeline(detector).run(events, seed=3)
        second = SmearingPipeline(detector).run(events, seed=3)
        self.assertEqual(first, second)


if __name__ == "__main__":
    unittest.main()
