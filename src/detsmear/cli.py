"""Command-line interface for smearing generated events with a configured detector."""

from __future__ import annotations

import argparse
import importlib.util
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

from .io import load_detector_json, load_events_json, write_event_table, write_smeared_table
from .models import SmearedEvent
from .pipeline import SmearingPipeline


def build_parser() -> argparse.ArgumentParser:
    """Define and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="detsmear",
        description="Apply detector resolution, acceptance and PID to generated DIS events.",
    )
    parser.add_argument("--events", required=True, help="Input JSON with key 'events'.")
    parser.add_argument(
        "--detector",
        required=True,
        help="Detector JSON with key 'devices' (plus optional 'pid', 'reconstruction', 'combination').",
    )
    parser.add_argument(
        "--out",
        required=True,
        help="Output table file for smeared particles (.parquet, .csv, .pkl).",
    )
    parser.add_argument(
        "--event-out",
        default=None,
        help="Optional output table file for per-event kinematics (.parquet, .csv, .pkl).",
    )
    parser.add_argument(
        "--reconstruction",
        default=None,
        help="Override the kinematics method (electron, jb, da).",
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed; drawn and logged if omitted.")
    parser.add_argument("--workers", type=int, default=1, help="Number of worker threads.")
    parser.add_argument(
        "--all-particles",
        action="store_true",
        help="Smear every particle in the record, not only final-state ones.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    parser.add_argument(
        "--custom-script",
        default=None,
        help="Path to Python file with process(events, context) function.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint: load inputs, smear events, write tables, optional custom hook."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    detector = load_detector_json(args.detector)
    if args.reconstruction is not None:
        detector = replace(detector, reconstruction=args.reconstruction)
    events = load_events_json(args.events)
    pipeline = SmearingPipeline(detector, final_state_only=not args.all_particles)
    smeared = pipeline.run(events, seed=args.seed, workers=args.workers)
    write_smeared_table(args.out, smeared)
    if args.event_out:
        write_event_table(args.event_out, smeared)

    if args.custom_script:
        run_custom_script(
            script_path=args.custom_script,
            events=smeared,
            context={
                "events_path": args.events,
                "detector_path": args.detector,
                "detector": detector,
                "seed": args.seed,
                "output_path": args.out,
                "event_output_path": args.event_out,
            },
        )
    return 0


def run_custom_script(
    script_path: str, events: list[SmearedEvent], context: dict[str, Any]
) -> None:
    """Execute user-supplied post-processing callback `process(events, context)`."""
    module = _load_module(script_path)
    process = getattr(module, "process", None)
    if process is None or not callable(process):
        raise ValueError(
            f"Custom script {script_path} must define callable process(events, context)."
        )
    process(events, context)


def _load_module(script_path: str):
    """Import a Python module from an arbitrary file path."""
    path = Path(script_path)
    spec = importlib.util.spec_from_file_location(path.stem, path)
    if spec is None or spec.loader is None:
        raise ValueError(f"Cannot import custom script: {script_path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


if __name__ == "__main__":
    raise SystemExit(main())
