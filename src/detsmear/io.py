"""Input/output helpers: JSON events and detector configuration, tabular export."""

from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any, Iterable

from .acceptance import AcceptanceZone, Range, SpeciesFilter
from .detector import CombinationPolicy, Detector
from .devices import DEVICE_CLASSES, Bremsstrahlung, Device, DeviceKind, PerfectDevice, Smearer
from .errors import ConfigurationError, DetsmearError
from .formula import as_formula
from .kinematics import ReconstructionMethod
from .models import (
    SMEARABLE,
    BeamParameters,
    ExactParticle,
    Kinematic,
    SemiInclusiveQuantities,
    SmearedEvent,
    TrueEvent,
)
from .pid import (
    BUILTIN_PARTICLES,
    UNKNOWN_SPECIES,
    ConfusionMatrixIdentifier,
    FormulaIdentifier,
    ParticleProperties,
    ParticleTable,
    PerfectIdentifier,
    PIDBin,
    PIDModel,
    species_from_name,
)

SEMI_INCLUSIVE_COLUMNS = ("z", "pt_vs_gamma", "theta_gamma", "phi_prf", "x_f")

_TRACKER_FIELDS = (
    "magnetic_field",
    "n_layers",
    "resolution",
    "radiation_length",
    "inner_radius",
    "outer_radius",
    "z_min",
    "z_max",
)


def load_events_json(path: str | Path) -> list[TrueEvent]:
    """Load multi-event input JSON into `TrueEvent` objects.

    Expected shape:
    {
      "beams": {"lepton_energy": 10, "hadron_energy": 100},
      "events": [
        {"event_id": "...", "beams": {...}, "true_kinematics": {...},
         "particles": [{"index": 1, "status": 1, "id": 11, "px": ...}, {"line": "..."}]},
        ...
      ]
    }
    A top-level `beams` object applies to events that do not define their own.
    """
    data = _load_json(path)
    events_data = data.get("events")
    if not isinstance(events_data, list):
        raise ConfigurationError("Events JSON must contain a list under key 'events'.")
    default_beams = data.get("beams")
    out: list[TrueEvent] = []
    for idx, event in enumerate(events_data):
        if not isinstance(event, dict):
            raise ConfigurationError(f"Event entry at index {idx} must be an object.")
        event_id = str(event.get("event_id", f"evt{idx}"))
        beams_data = event.get("beams", default_beams)
        if beams_data is None:
            raise ConfigurationError(f"Event '{event_id}' has no 'beams' and no top-level default.")
        particles_data = event.get("particles")
        if not isinstance(particles_data, list):
            raise ConfigurationError(f"Event '{event_id}' must contain a list under key 'particles'.")
        particles = tuple(
            _parse_particle_item(item=item, idx=pidx, context=f"event '{event_id}'")
            for pidx, item in enumerate(particles_data)
        )
        scalars = event.get("true_kinematics", {})
        if not isinstance(scalars, dict):
            raise ConfigurationError(f"Event '{event_id}' field 'true_kinematics' must be an object.")
        out.append(
            TrueEvent(
                event_id=event_id,
                particles=particles,
                beams=_parse_beams(beams_data, context=f"event '{event_id}'"),
                true_kinematics={str(k): float(v) for k, v in scalars.items()},
            )
        )
    return out


def load_detector_json(path: str | Path) -> Detector:
    """Load and validate a detector configuration; relative PID table paths resolve next to it."""
    return build_detector(_load_json(path), base_dir=Path(path).parent)


def load_pid_table_json(path: str | Path) -> ConfusionMatrixIdentifier:
    """Load a confusion-matrix PID table.

    Expected shape:
    {"species": [211, 321, 2212], "observed_species": [211, 321, 2212, 0],
     "bins": [{"p_min": 0, "p_max": 5, "matrix": [[...], ...]}, ...]}
    or a single momentum-independent `"matrix"` instead of `"bins"`.
    """
    return _parse_confusion_table(_load_json(path), context=str(path))


def build_detector(
    config: dict[str, Any],
    base_dir: str | Path | None = None,
    particle_table: ParticleTable | None = None,
) -> Detector:
    """Build a `Detector` from a configuration mapping, validating every entry."""
    devices_data = config.get("devices")
    if not isinstance(devices_data, list) or not devices_data:
        raise ConfigurationError("Detector configuration must contain a non-empty list under key 'devices'.")
    devices = tuple(_parse_device_item(item, idx) for idx, item in enumerate(devices_data))
    base = Path(base_dir) if base_dir is not None else Path(".")
    pid = _parse_pid_item(config.get("pid", {"kind": "perfect"}), base)
    if particle_table is None:
        particle_table = _parse_particle_table(config.get("particles"))
    return Detector(
        devices=devices,
        pid=pid,
        reconstruction=ReconstructionMethod.parse(config.get("reconstruction", "electron")),
        combination=CombinationPolicy.parse(config.get("combination", "inverse_variance")),
        particle_table=particle_table,
    )


def write_smeared_table(path: str | Path, events: Iterable[SmearedEvent]) -> None:
    """Write one row per smeared particle into a Parquet/CSV/Pickle table."""
    pd = _require_pandas()
    _write_frame(pd.DataFrame(_particle_rows(events)), path)


def write_event_table(path: str | Path, events: Iterable[SmearedEvent]) -> None:
    """Write one row per event (reconstructed and generator kinematics)."""
    pd = _require_pandas()
    _write_frame(pd.DataFrame(_event_rows(events)), path)


def smeared_particles_frame(events: Iterable[SmearedEvent]):
    """Return the per-particle table as a `pandas.DataFrame`."""
    pd = _require_pandas()
    return pd.DataFrame(_particle_rows(events))


def events_frame(events: Iterable[SmearedEvent]):
    """Return the per-event table as a `pandas.DataFrame`."""
    pd = _require_pandas()
    return pd.DataFrame(_event_rows(events))


def _write_frame(df, path: str | Path) -> None:
    out = Path(path)
    suffix = out.suffix.lower()
    if suffix == ".parquet":
        df.to_parquet(out, index=False)
    elif suffix in (".pkl", ".pickle"):
        df.to_pickle(out)
    elif suffix == ".csv":
        df.to_csv(out, index=False)
    else:
        raise ValueError(
            f"Unsupported output format '{suffix}'. Use .parquet, .csv, or .pkl"
        )


def _particle_rows(events: Iterable[SmearedEvent]) -> list[dict[str, Any]]:
    """Flatten smeared particles into DataFrame-ready rows; unobserved values stay missing."""
    rows: list[dict[str, Any]] = []
    for event in events:
        for prt in event.particles:
            row: dict[str, Any] = {
                "event_id": event.event_id,
                "index": prt.index,
                "status": prt.status,
                "species": prt.species,
                "identified_species": prt.identified_species,
                "parent_index": prt.parent_index,
                "is_scattered_lepton": prt.index == event.scattered_lepton_index,
            }
            for kin in SMEARABLE:
                row[kin.symbol] = prt.get(kin)
                row[f"{kin.symbol}_sigma"] = prt.sigma(kin)
                row[f"{kin.symbol}_measured"] = prt.is_measured(kin)
            row["px"] = prt.px
            row["py"] = prt.py
            row["eta"] = prt.eta
            semi = event.semi_inclusive.get(prt.index, SemiInclusiveQuantities())
            row["parent_id"] = semi.parent_id
            for name in SEMI_INCLUSIVE_COLUMNS:
                row[name] = getattr(semi, name)
            rows.append(row)
    return rows


def _event_rows(events: Iterable[SmearedEvent]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for event in events:
        kin = event.kinematics
        row: dict[str, Any] = {
            "event_id": event.event_id,
            "n_particles": len(event.particles),
            "scattered_lepton_index": event.scattered_lepton_index,
            "sqrt_s": event.center_of_mass_energy,
            "method": kin.method,
            "kinematics_valid": kin.valid,
            "q2": kin.q2,
            "x": kin.x,
            "y": kin.y,
            "w2": kin.w2,
            "invalid_reason": kin.reason,
        }
        for name, value in event.true_kinematics.items():
            row[f"true_{name}"] = value
        rows.append(row)
    return rows


def _require_pandas():
    """Import pandas lazily and provide a clear installation hint on failure."""
    try:
        import pandas as pd  # type: ignore
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            "pandas is required to write output tables. Install pandas (and pyarrow for .parquet)."
        ) from exc
    return pd


def _parse_particle_item(item: Any, idx: int, context: str) -> ExactParticle:
    """Parse one particle object (or generator `line`) into an `ExactParticle`."""
    if isinstance(item, str):
        return _particle_from_line(item, idx, context)
    if not isinstance(item, dict):
        raise ConfigurationError(f"Particle entry at index {idx} in {context} must be an object.")
    if "line" in item:
        return _particle_from_line(str(item["line"]), idx, context)
    try:
        vertex = item.get("vertex", (0.0, 0.0, 0.0))
        if len(vertex) != 3:
            raise ConfigurationError(f"Particle {idx} in {context} must have a 3-component vertex.")
        return ExactParticle(
            index=int(item.get("index", idx + 1)),
            status=int(item.get("status", 1)),
            species=species_from_name(item.get("id", item.get("species"))),
            px=float(item["px"]),
            py=float(item["py"]),
            pz=float(item["pz"]),
            e=float(item["e"] if "e" in item else item["E"]),
            m=float(item.get("m", 0.0)),
            parent_index=int(item.get("parent", item.get("parent_index", 0))),
            first_child=int(item.get("first_child", 0)),
            last_child=int(item.get("last_child", 0)),
            vertex=(float(vertex[0]), float(vertex[1]), float(vertex[2])),
        )
    except KeyError as exc:
        raise ConfigurationError(f"Particle {idx} in {context} is missing field {exc}.") from exc
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Particle {idx} in {context} is malformed: {exc}") from exc


def _particle_from_line(line: str, idx: int, context: str) -> ExactParticle:
    try:
        return ExactParticle.from_line(line)
    except ValueError as exc:
        raise ConfigurationError(f"Particle {idx} in {context} is malformed: {exc}") from exc


def _parse_beams(item: Any, context: str) -> BeamParameters:
    if not isinstance(item, dict):
        raise ConfigurationError(f"Beams in {context} must be an object.")
    try:
        return BeamParameters.from_energies(
            lepton_energy=float(item["lepton_energy"]),
            hadron_energy=float(item["hadron_energy"]),
            lepton_species=species_from_name(item.get("lepton_species", 11)),
            hadron_species=species_from_name(item.get("hadron_species", 2212)),
        )
    except KeyError as exc:
        raise ConfigurationError(f"Beams in {context} are missing field {exc}.") from exc
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Beams in {context} are malformed: {exc}") from exc


def _parse_device_item(item: Any, idx: int) -> Smearer:
    """Parse one device entry; the `kind` key selects the variant."""
    if not isinstance(item, dict):
        raise ConfigurationError(f"Device entry at index {idx} must be an object.")
    try:
        kind = DeviceKind(str(item.get("kind", "device")).strip().lower())
    except ValueError as exc:
        supported = ", ".join(k.value for k in DeviceKind)
        raise ConfigurationError(
            f"Device {idx} has unknown kind '{item.get('kind')}'. Supported kinds: {supported}"
        ) from exc
    name = str(item.get("name", f"{kind.value}{idx}"))
    acceptance = _parse_acceptance(item.get("acceptance"), name)
    try:
        if kind is DeviceKind.DEVICE:
            resolution = item.get("resolution")
            if not isinstance(resolution, dict) or not resolution:
                raise ConfigurationError(f"Device '{name}' needs a non-empty 'resolution' object.")
            return Device(
                resolutions={Kinematic.from_name(k): as_formula(v) for k, v in resolution.items()},
                acceptance=acceptance,
                species_filter=_parse_species_filter(item),
                name=name,
            )
        if kind is DeviceKind.PERFECT:
            dims = item.get("dimensions")
            return PerfectDevice(
                dimensions=SMEARABLE if dims is None else tuple(Kinematic.from_name(d) for d in dims),
                acceptance=acceptance,
                species_filter=_parse_species_filter(item),
                name=name,
            )
        if kind in (DeviceKind.PLANAR_TRACKER, DeviceKind.RADIAL_TRACKER):
            missing = [key for key in _TRACKER_FIELDS if key not in item]
            if missing:
                raise ConfigurationError(f"Tracker '{name}' is missing fields: {', '.join(missing)}")
            cls = DEVICE_CLASSES[kind]
            return cls(
                magnetic_field=float(item["magnetic_field"]),
                n_layers=int(item["n_layers"]),
                resolution=float(item["resolution"]),
                radiation_length=float(item["radiation_length"]),
                inner_radius=float(item["inner_radius"]),
                outer_radius=float(item["outer_radius"]),
                z_min=float(item["z_min"]),
                z_max=float(item["z_max"]),
                min_points=int(item.get("min_points", 3)),
                angular_resolution=float(item.get("angular_resolution", 0.0)),
                acceptance=acceptance,
                species_filter=_parse_species_filter(item, default_charge="charged"),
                name=name,
            )
        resolution = item.get("resolution")
        return Bremsstrahlung(
            epsilon=float(item.get("epsilon", 0.01)),
            radiation_lengths=float(item.get("radiation_lengths", 0.01)),
            resolution=None if resolution is None else as_formula(resolution),
            acceptance=acceptance,
            species_filter=_parse_species_filter(item, default_species=(11, -11)),
            name=name,
        )
    except DetsmearError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Device '{name}' is malformed: {exc}") from exc


def _parse_acceptance(value: Any, name: str) -> AcceptanceZone:
    if value is None:
        return AcceptanceZone()
    if not isinstance(value, dict):
        raise ConfigurationError(f"Device '{name}' acceptance must be an object of [low, high] ranges.")
    return AcceptanceZone({Kinematic.from_name(k): Range.parse(v) for k, v in value.items()})


def _parse_species_filter(
    item: dict[str, Any],
    default_charge: str = "all",
    default_species: tuple[int, ...] | None = None,
) -> SpeciesFilter:
    species = item.get("species", default_species)
    if species is not None:
        if not isinstance(species, (list, tuple)):
            raise ConfigurationError(f"Species whitelist must be a list, got {species!r}.")
        species = [species_from_name(s) for s in species]
    return SpeciesFilter.build(
        genre=item.get("genre", "all"),
        charge=item.get("charge", default_charge),
        species=species,
    )


def _parse_pid_item(item: Any, base_dir: Path) -> PIDModel:
    if not isinstance(item, dict):
        raise ConfigurationError("PID configuration must be an object with a 'kind' key.")
    kind = str(item.get("kind", "perfect")).strip().lower()
    if kind == "perfect":
        return PerfectIdentifier()
    if kind == "table":
        if "path" in item:
            table_path = Path(item["path"])
            if not table_path.is_absolute():
                table_path = base_dir / table_path
            return load_pid_table_json(table_path)
        return _parse_confusion_table(item, context="inline PID table")
    if kind == "formula":
        if "probability" not in item:
            raise ConfigurationError("Formula PID needs a 'probability' expression.")
        species = item.get("species")
        return FormulaIdentifier(
            probability=as_formula(item["probability"]),
            unknown=species_from_name(item.get("unknown", UNKNOWN_SPECIES)),
            species=None if species is None else frozenset(species_from_name(s) for s in species),
        )
    raise ConfigurationError(f"Unknown PID kind '{kind}'. Use perfect, table, or formula.")


def _parse_confusion_table(data: dict[str, Any], context: str) -> ConfusionMatrixIdentifier:
    species_data = data.get("species")
    if not isinstance(species_data, list):
        raise ConfigurationError(f"PID table in {context} must contain a list under key 'species'.")
    species = tuple(species_from_name(s) for s in species_data)
    observed_data = data.get("observed_species")
    observed = None if observed_data is None else tuple(species_from_name(s) for s in observed_data)
    unknown = species_from_name(data.get("unknown", UNKNOWN_SPECIES))
    if "bins" in data:
        bins_data = data["bins"]
        if not isinstance(bins_data, list):
            raise ConfigurationError(f"PID table in {context}: 'bins' must be a list.")
        bins = tuple(_parse_pid_bin(entry, idx, context) for idx, entry in enumerate(bins_data))
    elif "matrix" in data:
        bins = (_parse_pid_bin({"matrix": data["matrix"]}, 0, context),)
    else:
        raise ConfigurationError(f"PID table in {context} must define 'bins' or 'matrix'.")
    return ConfusionMatrixIdentifier(species=species, bins=bins, observed_species=observed, unknown=unknown)


def _parse_pid_bin(entry: Any, idx: int, context: str) -> PIDBin:
    if not isinstance(entry, dict) or "matrix" not in entry:
        raise ConfigurationError(f"PID bin {idx} in {context} must be an object with a 'matrix'.")
    matrix = entry["matrix"]
    if not isinstance(matrix, list) or not all(isinstance(row, list) for row in matrix):
        raise ConfigurationError(f"PID bin {idx} in {context}: 'matrix' must be a list of lists.")
    p_max = entry.get("p_max")
    try:
        return PIDBin(
            p_min=float(entry.get("p_min", 0.0)),
            p_max=math.inf if p_max is None else float(p_max),
            matrix=tuple(tuple(float(v) for v in row) for row in matrix),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"PID bin {idx} in {context} contains non-numeric values.") from exc


def _parse_particle_table(entries: Any) -> ParticleTable:
    """Built-in species plus optional `particles` overrides from the configuration."""
    if entries is None:
        return ParticleTable()
    if not isinstance(entries, list):
        raise ConfigurationError("Detector key 'particles' must be a list of particle objects.")
    table = {props.pdg_id: props for props in BUILTIN_PARTICLES}
    for idx, entry in enumerate(entries):
        if not isinstance(entry, dict) or "pdg_id" not in entry or "mass" not in entry:
            raise ConfigurationError(f"Particle definition {idx} must be an object with 'pdg_id' and 'mass'.")
        pdg_id = int(entry["pdg_id"])
        table[pdg_id] = ParticleProperties(
            name=str(entry.get("name", f"pdg{pdg_id}")),
            mass=float(entry["mass"]),
            charge=float(entry.get("charge", 0.0)),
            pdg_id=pdg_id,
        )
    return ParticleTable(list(table.values()))


def _load_json(path: str | Path) -> dict[str, Any]:
    """Read and validate a JSON object document from disk."""
    raw = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"JSON document at {path} must be an object.")
    return data
