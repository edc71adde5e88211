"""Particle properties and particle-identification (PID) models.

`ParticleTable` is the species -> (mass, charge) lookup consumed by devices
and the detector. It is an explicit object owned by the run configuration, so
tests and concurrent runs can each supply their own instance.

PID models share one capability, `identify(particle, rng) -> species`:
- `PerfectIdentifier` always returns the true species without a random draw
- `ConfusionMatrixIdentifier` samples an observed species from a
  true x observed probability table, optionally binned in momentum
- `FormulaIdentifier` evaluates a probability of correct identification and
  maps failures to the configured unknown species.
"""

from __future__ import annotations

import bisect
import logging
import math
import threading
from dataclasses import dataclass, field
from random import Random
from typing import Callable, Iterable, Sequence, Union

from .errors import ConfigurationError, EvaluationError
from .formula import FormulaExpression
from .models import ExactParticle

logger = logging.getLogger(__name__)

UNKNOWN_SPECIES = 0
ROW_TOLERANCE = 1e-6


@dataclass(frozen=True)
class ParticleProperties:
    """Static properties of one particle species."""

    name: str
    mass: float
    charge: float
    pdg_id: int
    known: bool = True


BUILTIN_PARTICLES: tuple[ParticleProperties, ...] = (
    ParticleProperties("e-", 0.00051099895, -1.0, 11),
    ParticleProperties("e+", 0.00051099895, 1.0, -11),
    ParticleProperties("nu_e", 0.0, 0.0, 12),
    ParticleProperties("nu_e~", 0.0, 0.0, -12),
    ParticleProperties("mu-", 0.1056583755, -1.0, 13),
    ParticleProperties("mu+", 0.1056583755, 1.0, -13),
    ParticleProperties("nu_mu", 0.0, 0.0, 14),
    ParticleProperties("nu_mu~", 0.0, 0.0, -14),
    ParticleProperties("gamma", 0.0, 0.0, 22),
    ParticleProperties("pi0", 0.1349768, 0.0, 111),
    ParticleProperties("pi+", 0.13957039, 1.0, 211),
    ParticleProperties("pi-", 0.13957039, -1.0, -211),
    ParticleProperties("K0L", 0.497611, 0.0, 130),
    ParticleProperties("K0S", 0.497611, 0.0, 310),
    ParticleProperties("K+", 0.493677, 1.0, 321),
    ParticleProperties("K-", 0.493677, -1.0, -321),
    ParticleProperties("n", 0.93956542052, 0.0, 2112),
    ParticleProperties("n~", 0.93956542052, 0.0, -2112),
    ParticleProperties("p", 0.93827208816, 1.0, 2212),
    ParticleProperties("p~", 0.93827208816, -1.0, -2212),
)

_NAME_TO_SPECIES: dict[str, int] = {
    "e": 11,
    "electron": 11,
    "positron": -11,
    "mu": 13,
    "muon": 13,
    "gamma": 22,
    "photon": 22,
    "pi": 211,
    "pion": 211,
    "k": 321,
    "kaon": 321,
    "p": 2212,
    "proton": 2212,
    "n": 2112,
    "neutron": 2112,
    "unknown": UNKNOWN_SPECIES,
}
_NAME_TO_SPECIES.update({props.name.lower(): props.pdg_id for props in BUILTIN_PARTICLES})


def species_from_name(name: "str | int") -> int:
    """Resolve a PDG code or a short particle name (e.g. `pi`, `kaon`) into a PDG code."""
    if isinstance(name, int) and not isinstance(name, bool):
        return name
    key = str(name).strip().lower()
    try:
        return int(key)
    except ValueError:
        pass
    try:
        return _NAME_TO_SPECIES[key]
    except KeyError as exc:
        supported = ", ".join(sorted(_NAME_TO_SPECIES))
        raise ConfigurationError(
            f"Unknown particle species name '{name}'. Supported names: {supported}"
        ) from exc


class ParticleTable:
    """Caching species -> `ParticleProperties` lookup with documented defaults.

    Species missing from the table and from the optional `fallback` resolve
    to mass `default_mass` and charge `default_charge` with `known=False`.
    """

    def __init__(
        self,
        entries: Iterable[ParticleProperties] | None = None,
        fallback: Callable[[int], ParticleProperties | None] | None = None,
        default_mass: float = 0.0,
        default_charge: float = 0.0,
    ) -> None:
        self._cache: dict[int, ParticleProperties] = {
            props.pdg_id: props for props in (BUILTIN_PARTICLES if entries is None else entries)
        }
        self._fallback = fallback
        self._default_mass = default_mass
        self._default_charge = default_charge
        self._lock = threading.Lock()

    def lookup(self, species: int) -> ParticleProperties:
        props = self._cache.get(species)
        if props is not None:
            return props
        resolved = self._fallback(species) if self._fallback is not None else None
        if resolved is None:
            resolved = ParticleProperties(
                name=f"pdg{species}",
                mass=self._default_mass,
                charge=self._default_charge,
                pdg_id=species,
                known=False,
            )
        with self._lock:
            return self._cache.setdefault(species, resolved)

    def contains(self, species: int) -> bool:
        return self.lookup(species).known

    def mass(self, species: int) -> float:
        return self.lookup(species).mass

    def charge(self, species: int) -> float:
        return self.lookup(species).charge


@dataclass(frozen=True)
class PerfectIdentifier:
    """Always identifies the true species."""

    def identify(self, particle: ExactParticle, rng: Random) -> int:
        return particle.species


@dataclass(frozen=True)
class PIDBin:
    """Confusion matrix valid for momenta in `[p_min, p_max)`."""

    p_min: float
    p_max: float
    matrix: tuple[tuple[float, ...], ...]

    def covers(self, p: float) -> bool:
        return self.p_min <= p < self.p_max or (p == self.p_max == math.inf)


@dataclass(frozen=True)
class ConfusionMatrixIdentifier:
    """Samples the observed species from the true species' row of a confusion matrix.

    Rows follow `species`, columns follow `observed_species` (defaults to
    `species`; may include `unknown` to model ambiguous identification).
    """

    species: tuple[int, ...]
    bins: tuple[PIDBin, ...]
    observed_species: tuple[int, ...] | None = None
    unknown: int = UNKNOWN_SPECIES
    _rows: dict[int, int] = field(init=False, repr=False, compare=False)
    _cumulative: tuple[tuple[tuple[float, ...], ...], ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        species = tuple(self.species)
        observed = species if self.observed_species is None else tuple(self.observed_species)
        object.__setattr__(self, "species", species)
        object.__setattr__(self, "observed_species", observed)
        if not species:
            raise ConfigurationError("PID table must list at least one true species.")
        if len(set(species)) != len(species):
            raise ConfigurationError("PID table lists a true species more than once.")
        if not self.bins:
            raise ConfigurationError("PID table must define at least one momentum bin.")
        cumulative = []
        for bin_ in self.bins:
            if bin_.p_min >= bin_.p_max:
                raise ConfigurationError(f"PID momentum bin [{bin_.p_min}, {bin_.p_max}) is empty.")
            cumulative.append(_validate_matrix(bin_, len(species), len(observed)))
        object.__setattr__(self, "_rows", {s: i for i, s in enumerate(species)})
        object.__setattr__(self, "_cumulative", tuple(cumulative))

    @classmethod
    def from_matrix(
        cls,
        species: Sequence[int],
        matrix: Sequence[Sequence[float]],
        observed_species: Sequence[int] | None = None,
        unknown: int = UNKNOWN_SPECIES,
    ) -> "ConfusionMatrixIdentifier":
        """Build a momentum-independent table."""
        bin_ = PIDBin(0.0, math.inf, tuple(tuple(float(v) for v in row) for row in matrix))
        return cls(
            species=tuple(species),
            bins=(bin_,),
            observed_species=None if observed_species is None else tuple(observed_species),
            unknown=unknown,
        )

    def identify(self, particle: ExactParticle, rng: Random) -> int:
        row = self._rows.get(particle.species)
        if row is None:
            return self.unknown
        for bin_, cumulative in zip(self.bins, self._cumulative, strict=True):
            if bin_.covers(particle.p):
                cum_row = cumulative[row]
                col = bisect.bisect_right(cum_row, rng.random())
                # Rows summing to slightly below 1 can leave u past the last edge.
                col = min(col, len(cum_row) - 1)
                while col > 0 and bin_.matrix[row][col] == 0.0:
                    col -= 1
                assert self.observed_species is not None
                return self.observed_species[col]
        return self.unknown


@dataclass(frozen=True)
class FormulaIdentifier:
    """Identifies correctly with a kinematics-dependent probability, else `unknown`.

    `species` optionally restricts the particles the formula applies to;
    others are reported as `unknown`.
    """

    probability: FormulaExpression
    unknown: int = UNKNOWN_SPECIES
    species: frozenset[int] | None = None

    def identify(self, particle: ExactParticle, rng: Random) -> int:
        if self.species is not None and particle.species not in self.species:
            return self.unknown
        try:
            prob = self.probability.evaluate(particle)
        except EvaluationError as exc:
            logger.debug("PID probability undefined for particle %d: %s", particle.index, exc)
            return self.unknown
        if not 0.0 <= prob <= 1.0:
            logger.debug("PID probability %g outside [0, 1] for particle %d", prob, particle.index)
            return self.unknown
        return particle.species if rng.random() < prob else self.unknown


PIDModel = Union[PerfectIdentifier, ConfusionMatrixIdentifier, FormulaIdentifier]


def _validate_matrix(bin_: PIDBin, n_rows: int, n_cols: int) -> tuple[tuple[float, ...], ...]:
    """Check shape and normalisation of one confusion matrix and return cumulative rows."""
    if len(bin_.matrix) != n_rows:
        raise ConfigurationError(f"PID matrix must have {n_rows} rows, got {len(bin_.matrix)}.")
    cumulative: list[tuple[float, ...]] = []
    for idx, row in enumerate(bin_.matrix):
        if len(row) != n_cols:
            raise ConfigurationError(f"PID matrix row {idx} must have {n_cols} entries, got {len(row)}.")
        if any(not math.isfinite(v) or v < 0.0 for v in row):
            raise ConfigurationError(f"PID matrix row {idx} contains negative or non-finite probabilities.")
        total = math.fsum(row)
        if abs(total - 1.0) > ROW_TOLERANCE:
            raise ConfigurationError(f"PID matrix row {idx} sums to {total}, expected 1.")
        running = 0.0
        edges = []
        for value in row:
            running += value
            edges.append(running)
        cumulative.append(tuple(edges))
    return tuple(cumulative)
