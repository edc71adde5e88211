"""Core data models used by the smearing framework.

This module defines:
- the kinematic dimensions a device can measure or cut on (`Kinematic`)
- the exact Monte-Carlo particle record (`ExactParticle`)
- device measurements and the smeared particle record (`Measurement`,
  `SmearedParticle`)
- beam and event containers (`BeamParameters`, `TrueEvent`, `SmearedEvent`)
- reconstructed event kinematics (`KinematicsResult`).

Particles reference each other through stable 1-based generator indices,
never through object references, so smeared records can be filtered and
serialized without breaking parent/child lookups.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import Generic, Mapping, TypeVar

from .errors import ConfigurationError
from .physics import LorentzVector, eta_from_theta, pseudorapidity, rapidity, wrap_phi

Vertex = tuple[float, float, float]

ELECTRON_MASS = 0.00051099895
PROTON_MASS = 0.93827208816


class Kinematic(str, Enum):
    """Kinematic dimension of a particle; the value is its formula symbol."""

    E = "E"
    P = "P"
    PT = "pT"
    PZ = "pZ"
    THETA = "theta"
    PHI = "phi"
    ETA = "eta"
    RAPIDITY = "rapidity"

    @property
    def symbol(self) -> str:
        """Variable name used in resolution formulas."""
        return self.value

    @property
    def smearable(self) -> bool:
        """Whether a device may report a measurement for this dimension."""
        return self in SMEARABLE

    @classmethod
    def from_name(cls, name: str) -> "Kinematic":
        """Resolve a symbol or member name (case-insensitive) into a `Kinematic`."""
        key = name.strip().lower()
        for member in cls:
            if key in (member.value.lower(), member.name.lower()):
                return member
        supported = ", ".join(m.value for m in cls)
        raise ConfigurationError(f"Unknown kinematic '{name}'. Supported names: {supported}")


SMEARABLE: tuple[Kinematic, ...] = (
    Kinematic.E,
    Kinematic.P,
    Kinematic.PT,
    Kinematic.PZ,
    Kinematic.THETA,
    Kinematic.PHI,
)


@dataclass(frozen=True)
class ExactParticle:
    """Monte-Carlo truth particle with cached derived kinematics.

    Primary fields follow the generator record
    `I KS id orig daughter ldaughter px py pz E m xv yv zv`. Derived
    quantities are computed once in `__post_init__`; the record is frozen, so
    a new 4-vector always goes through `with_four_vector`, which rebuilds the
    cache.
    """

    index: int
    status: int
    species: int
    px: float
    py: float
    pz: float
    e: float
    m: float = 0.0
    parent_index: int = 0
    first_child: int = 0
    last_child: int = 0
    vertex: Vertex = (0.0, 0.0, 0.0)
    pt: float = field(init=False, compare=False)
    p: float = field(init=False, compare=False)
    theta: float = field(init=False, compare=False)
    phi: float = field(init=False, compare=False)
    rapidity: float = field(init=False, compare=False)
    eta: float = field(init=False, compare=False)

    def __post_init__(self) -> None:
        pt = math.hypot(self.px, self.py)
        p = math.hypot(pt, self.pz)
        object.__setattr__(self, "pt", pt)
        object.__setattr__(self, "p", p)
        object.__setattr__(self, "theta", math.atan2(pt, self.pz))
        object.__setattr__(self, "phi", wrap_phi(math.atan2(self.py, self.px)))
        object.__setattr__(self, "rapidity", rapidity(self.e, self.pz))
        object.__setattr__(self, "eta", pseudorapidity(p, self.pz))

    @classmethod
    def from_line(cls, line: str) -> "ExactParticle":
        """Parse one whitespace-separated generator particle record."""
        tokens = line.split()
        if len(tokens) != 14:
            raise ValueError(f"Bad particle input: {line!r}")
        try:
            index, status, species, orig, daughter, ldaughter = (int(t) for t in tokens[:6])
            px, py, pz, e, m, xv, yv, zv = (float(t) for t in tokens[6:])
        except ValueError as exc:
            raise ValueError(f"Bad particle input: {line!r}") from exc
        return cls(
            index=index,
            status=status,
            species=species,
            px=px,
            py=py,
            pz=pz,
            e=e,
            m=m,
            parent_index=orig,
            first_child=daughter,
            last_child=ldaughter,
            vertex=(xv, yv, zv),
        )

    def with_four_vector(self, vec: LorentzVector) -> "ExactParticle":
        """Return a copy carrying a new 4-vector with recomputed derived quantities."""
        return ExactParticle(
            index=self.index,
            status=self.status,
            species=self.species,
            px=vec.px,
            py=vec.py,
            pz=vec.pz,
            e=vec.e,
            m=self.m,
            parent_index=self.parent_index,
            first_child=self.first_child,
            last_child=self.last_child,
            vertex=self.vertex,
        )

    def four_vector(self) -> LorentzVector:
        return LorentzVector(self.px, self.py, self.pz, self.e)

    @property
    def n_children(self) -> int:
        if self.first_child < 1:
            return 0
        return max(self.last_child - self.first_child + 1, 1)

    def value(self, kinematic: Kinematic) -> float:
        """Return the cached value of one kinematic dimension."""
        return _EXACT_GETTERS[kinematic](self)

    def kinematic_values(self) -> dict[str, float]:
        """Return `{formula symbol: value}` for every kinematic dimension."""
        return {k.symbol: _EXACT_GETTERS[k](self) for k in Kinematic}


_EXACT_GETTERS = {
    Kinematic.E: lambda prt: prt.e,
    Kinematic.P: lambda prt: prt.p,
    Kinematic.PT: lambda prt: prt.pt,
    Kinematic.PZ: lambda prt: prt.pz,
    Kinematic.THETA: lambda prt: prt.theta,
    Kinematic.PHI: lambda prt: prt.phi,
    Kinematic.ETA: lambda prt: prt.eta,
    Kinematic.RAPIDITY: lambda prt: prt.rapidity,
}


@dataclass(frozen=True)
class Measurement:
    """One device measurement of one dimension.

    `sigma is None` means the device cannot report a resolution comparable
    with Gaussian devices (e.g. radiative energy loss).
    """

    value: float
    sigma: float | None = None


@dataclass(frozen=True)
class SmearedParticle:
    """Detector-level view of one accepted true particle.

    `index` is the back-reference to the originating `ExactParticle.index`.
    Only dimensions present in `values` were observed; `measured` lists the
    dimensions set directly by a device, the rest were derived from those.
    """

    index: int
    status: int
    species: int
    identified_species: int
    values: Mapping[Kinematic, float] = field(default_factory=dict)
    sigmas: Mapping[Kinematic, float | None] = field(default_factory=dict)
    measured: frozenset[Kinematic] = frozenset()
    parent_index: int = 0
    first_child: int = 0
    last_child: int = 0
    vertex: Vertex = (0.0, 0.0, 0.0)

    def get(self, kinematic: Kinematic) -> float | None:
        """Return the observed value, or `None` when the dimension was not observed."""
        return self.values.get(kinematic)

    def is_observed(self, kinematic: Kinematic) -> bool:
        return kinematic in self.values

    def is_measured(self, kinematic: Kinematic) -> bool:
        return kinematic in self.measured

    def sigma(self, kinematic: Kinematic) -> float | None:
        """Combined resolution of a measured dimension, if comparable."""
        return self.sigmas.get(kinematic)

    @property
    def observed(self) -> frozenset[Kinematic]:
        return frozenset(self.values)

    @property
    def e(self) -> float | None:
        return self.values.get(Kinematic.E)

    @property
    def p(self) -> float | None:
        return self.values.get(Kinematic.P)

    @property
    def pt(self) -> float | None:
        return self.values.get(Kinematic.PT)

    @property
    def pz(self) -> float | None:
        return self.values.get(Kinematic.PZ)

    @property
    def theta(self) -> float | None:
        return self.values.get(Kinematic.THETA)

    @property
    def phi(self) -> float | None:
        return self.values.get(Kinematic.PHI)

    @property
    def px(self) -> float | None:
        if self.pt is None or self.phi is None:
            return None
        return self.pt * math.cos(self.phi)

    @property
    def py(self) -> float | None:
        if self.pt is None or self.phi is None:
            return None
        return self.pt * math.sin(self.phi)

    @property
    def eta(self) -> float | None:
        """Pseudorapidity from the observed polar angle."""
        if self.theta is None:
            return None
        return eta_from_theta(self.theta)

    def four_vector(self) -> LorentzVector | None:
        """Observed 4-vector, or `None` unless energy and all momentum components are known."""
        px, py, pz, e = self.px, self.py, self.pz, self.e
        if px is None or py is None or pz is None or e is None:
            return None
        return LorentzVector(px, py, pz, e)


@dataclass(frozen=True)
class BeamParameters:
    """Incident beams of one event (lepton along -z, hadron along +z)."""

    lepton: LorentzVector
    hadron: LorentzVector
    lepton_species: int = 11
    hadron_species: int = 2212

    @classmethod
    def from_energies(
        cls,
        lepton_energy: float,
        hadron_energy: float,
        lepton_species: int = 11,
        hadron_species: int = 2212,
        lepton_mass: float = ELECTRON_MASS,
        hadron_mass: float = PROTON_MASS,
    ) -> "BeamParameters":
        """Build head-on beams from their energies."""
        if lepton_energy < lepton_mass or hadron_energy < hadron_mass:
            raise ConfigurationError("Beam energies must not be below the beam masses.")
        lepton_pz = -math.sqrt(lepton_energy * lepton_energy - lepton_mass * lepton_mass)
        hadron_pz = math.sqrt(hadron_energy * hadron_energy - hadron_mass * hadron_mass)
        return cls(
            lepton=LorentzVector(0.0, 0.0, lepton_pz, lepton_energy),
            hadron=LorentzVector(0.0, 0.0, hadron_pz, hadron_energy),
            lepton_species=lepton_species,
            hadron_species=hadron_species,
        )

    @property
    def s(self) -> float:
        """Squared centre-of-mass energy."""
        return (self.lepton + self.hadron).mass2

    @property
    def center_of_mass_energy(self) -> float:
        return math.sqrt(max(self.s, 0.0))

    @property
    def lepton_energy(self) -> float:
        return self.lepton.e

    @property
    def hadron_mass(self) -> float:
        return max(self.hadron.mass, 0.0)


ParticleT = TypeVar("ParticleT", ExactParticle, SmearedParticle)


class _IndexedParticles(Generic[ParticleT]):
    """Index-based particle lookups shared by true and smeared events."""

    particles: tuple[ParticleT, ...]

    @cached_property
    def _by_index(self) -> dict[int, ParticleT]:
        return {prt.index: prt for prt in self.particles}

    def particle(self, index: int) -> ParticleT | None:
        """Return the particle carrying generator index `index`, if present."""
        return self._by_index.get(index)

    def parent_of(self, prt: ParticleT) -> ParticleT | None:
        if prt.parent_index < 1:
            return None
        return self._by_index.get(prt.parent_index)

    def children_of(self, prt: ParticleT) -> list[ParticleT]:
        """Return the children present in this record, in index order."""
        if prt.first_child < 1:
            return []
        last = max(prt.last_child, prt.first_child)
        return [
            self._by_index[idx]
            for idx in range(prt.first_child, last + 1)
            if idx in self._by_index
        ]

    def has_child(self, prt: ParticleT, species: int) -> bool:
        return any(child.species == species for child in self.children_of(prt))


@dataclass(frozen=True)
class TrueEvent(_IndexedParticles[ExactParticle]):
    """One generated event: ordered truth particles plus beams and generator scalars."""

    event_id: str
    particles: tuple[ExactParticle, ...]
    beams: BeamParameters
    true_kinematics: Mapping[str, float] = field(default_factory=dict)

    @property
    def center_of_mass_energy(self) -> float:
        return self.beams.center_of_mass_energy


@dataclass(frozen=True)
class KinematicsResult:
    """Reconstructed DIS kinematics of one event.

    Invalid results carry `None` for every quantity and a `reason`.
    """

    method: str
    valid: bool
    q2: float | None = None
    x: float | None = None
    y: float | None = None
    w2: float | None = None
    reason: str | None = None

    @classmethod
    def invalid(cls, method: str, reason: str) -> "KinematicsResult":
        return cls(method=method, valid=False, reason=reason)

    @property
    def w(self) -> float | None:
        if self.w2 is None:
            return None
        return math.sqrt(self.w2)


@dataclass(frozen=True)
class SemiInclusiveQuantities:
    """Generator-level kinematics of one particle relative to the exchanged boson.

    `z` is `(P.p)/(P.q)`; `theta_gamma`, `pt_vs_gamma` and the HERMES
    `phi_prf` are taken in the hadron-beam rest frame with the boson as
    reference axis; `x_f` is `2 pz*/W` in the boson-hadron centre-of-mass
    frame. Quantities are `None` when the record lacks the beams or the
    boson, or when they are undefined for the particle.
    """

    z: float | None = None
    pt_vs_gamma: float | None = None
    theta_gamma: float | None = None
    phi_prf: float | None = None
    x_f: float | None = None
    parent_id: int = 0


@dataclass(frozen=True)
class SmearedEvent(_IndexedParticles[SmearedParticle]):
    """Smeared counterpart of one `TrueEvent`."""

    event_id: str
    particles: tuple[SmearedParticle, ...]
    beams: BeamParameters
    kinematics: KinematicsResult
    scattered_lepton_index: int | None = None
    true_kinematics: Mapping[str, float] = field(default_factory=dict)
    semi_inclusive: Mapping[int, SemiInclusiveQuantities] = field(default_factory=dict)

    @property
    def center_of_mass_energy(self) -> float:
        return self.beams.center_of_mass_energy

    @property
    def scattered_lepton(self) -> SmearedParticle | None:
        if self.scattered_lepton_index is None:
            return None
        return self.particle(self.scattered_lepton_index)
