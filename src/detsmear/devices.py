"""Detector devices: resolution models acting on particle kinematics.

Every device variant exposes the same capability,
`apply(particle, rng, properties) -> DeviceResponse`, and the set of
variants is closed (`DeviceKind`):
- `Device`: text formulas giving the Gaussian resolution per dimension
- `PerfectDevice`: reports true values for its dimensions
- `RadialTracker` / `PlanarTracker`: momentum resolution computed in
  curvature space from barrel-layer or forward-disk geometry
- `Bremsstrahlung`: radiative energy loss of electrons before an optional
  energy resolution.

Devices are immutable after construction and hold no per-call state; all
randomness comes from the `rng` passed in, so a device may be shared across
worker threads.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from random import Random
from typing import ClassVar, Mapping, Union

import numpy as np

from .acceptance import AcceptanceZone, ChargeFilter, SpeciesFilter
from .errors import ConfigurationError, EvaluationError
from .formula import FormulaExpression, as_formula
from .models import SMEARABLE, ExactParticle, Kinematic, Measurement
from .physics import wrap_phi
from .pid import ParticleProperties

logger = logging.getLogger(__name__)

MAX_REDRAWS = 100
MS_SCALE_GEV = 0.0136
CURVATURE_CONSTANT = 0.3  # GeV / (T m)


class DeviceKind(str, Enum):
    """Tag of each device variant, as used in detector configuration files."""

    DEVICE = "device"
    PERFECT = "perfect"
    PLANAR_TRACKER = "planar_tracker"
    RADIAL_TRACKER = "radial_tracker"
    BREMSSTRAHLUNG = "bremsstrahlung"


@dataclass(frozen=True)
class DeviceResponse:
    """Outcome of one device acting on one particle.

    `accepted=False` means the device did not act; it does not reject the
    particle from the detector as a whole.
    """

    accepted: bool
    measurements: Mapping[Kinematic, Measurement] = field(default_factory=dict)


NOT_ACCEPTED = DeviceResponse(accepted=False)


def smear_value(kinematic: Kinematic, true_value: float, sigma: float, rng: Random) -> float | None:
    """Draw a Gaussian measurement around `true_value` within physical bounds.

    A zero sigma returns `true_value` itself without touching `rng`. Returns
    `None` when no physical value was drawn within `MAX_REDRAWS` attempts.
    """
    if sigma == 0.0:
        return true_value
    if kinematic is Kinematic.PHI:
        return wrap_phi(rng.gauss(true_value, sigma))
    for _ in range(MAX_REDRAWS):
        value = rng.gauss(true_value, sigma)
        if is_physical(kinematic, value):
            return value
    return None


def is_physical(kinematic: Kinematic, value: float) -> bool:
    """Whether a measured value lies in the physical domain of its dimension."""
    if kinematic in (Kinematic.E, Kinematic.P, Kinematic.PT):
        return value >= 0.0
    if kinematic is Kinematic.THETA:
        return 0.0 <= value <= math.pi
    return True


def _charged_only() -> SpeciesFilter:
    return SpeciesFilter(charge=ChargeFilter.CHARGED)


def _electrons_only() -> SpeciesFilter:
    return SpeciesFilter(species=frozenset({11, -11}))


@dataclass(frozen=True)
class Device:
    """Parametrised device: one resolution formula per measured dimension.

    Formulas are evaluated at the particle's true kinematics and give the
    Gaussian sigma of the measurement in that dimension, e.g.
    `{Kinematic.E: "sqrt(0.02^2 * E + 0.01^2 * E^2)"}`.
    """

    resolutions: Mapping[Kinematic, FormulaExpression]
    acceptance: AcceptanceZone = field(default_factory=AcceptanceZone)
    species_filter: SpeciesFilter = field(default_factory=SpeciesFilter)
    name: str = "device"
    kind: ClassVar[DeviceKind] = DeviceKind.DEVICE

    def __post_init__(self) -> None:
        if not self.resolutions:
            raise ConfigurationError(f"Device '{self.name}' must define at least one resolution.")
        parsed: dict[Kinematic, FormulaExpression] = {}
        for key, formula in self.resolutions.items():
            kin = key if isinstance(key, Kinematic) else Kinematic.from_name(str(key))
            if not kin.smearable:
                raise ConfigurationError(f"Device '{self.name}' cannot measure '{kin.value}'.")
            parsed[kin] = as_formula(formula)
        object.__setattr__(self, "resolutions", parsed)

    @property
    def dimensions(self) -> tuple[Kinematic, ...]:
        return tuple(self.resolutions)

    def accepts(self, particle: ExactParticle, properties: ParticleProperties) -> bool:
        return self.species_filter.allows(particle.species, properties.charge) and self.acceptance.contains(
            particle
        )

    def apply(self, particle: ExactParticle, rng: Random, properties: ParticleProperties) -> DeviceResponse:
        if not self.accepts(particle, properties):
            return NOT_ACCEPTED
        measurements: dict[Kinematic, Measurement] = {}
        for kin, formula in self.resolutions.items():
            try:
                sigma = formula.evaluate(particle)
            except EvaluationError as exc:
                logger.debug("%s: no %s resolution for particle %d: %s", self.name, kin.value, particle.index, exc)
                continue
            if sigma < 0.0:
                logger.debug("%s: negative %s resolution %g for particle %d", self.name, kin.value, sigma, particle.index)
                continue
            value = smear_value(kin, particle.value(kin), sigma, rng)
            if value is None:
                logger.debug("%s: no physical %s drawn for particle %d", self.name, kin.value, particle.index)
                continue
            measurements[kin] = Measurement(value, sigma)
        return DeviceResponse(accepted=True, measurements=measurements)


@dataclass(frozen=True)
class PerfectDevice:
    """Identity device: reports the true value of each dimension with zero sigma."""

    dimensions: tuple[Kinematic, ...] = SMEARABLE
    acceptance: AcceptanceZone = field(default_factory=AcceptanceZone)
    species_filter: SpeciesFilter = field(default_factory=SpeciesFilter)
    name: str = "perfect"
    kind: ClassVar[DeviceKind] = DeviceKind.PERFECT

    def __post_init__(self) -> None:
        dims = tuple(d if isinstance(d, Kinematic) else Kinematic.from_name(str(d)) for d in self.dimensions)
        if not dims or any(not d.smearable for d in dims):
            raise ConfigurationError(f"Perfect device '{self.name}' needs smearable dimensions.")
        object.__setattr__(self, "dimensions", dims)

    def accepts(self, particle: ExactParticle, properties: ParticleProperties) -> bool:
        return self.species_filter.allows(particle.species, properties.charge) and self.acceptance.contains(
            particle
        )

    def apply(self, particle: ExactParticle, rng: Random, properties: ParticleProperties) -> DeviceResponse:
        if not self.accepts(particle, properties):
            return NOT_ACCEPTED
        return DeviceResponse(
            accepted=True,
            measurements={kin: Measurement(particle.value(kin), 0.0) for kin in self.dimensions},
        )


@dataclass(frozen=True)
class _Tracker(ABC):
    """Common tracker model; subclasses provide the lever arm and hit count.

    Lengths are in metres and the magnetic field in tesla. The momentum
    resolution combines the intrinsic (Gluckstern) term and multiple
    scattering:

        sigma(pT)/pT = sqrt(intrinsic^2 + ms^2)
        intrinsic = resolution * pT * sqrt(720 / (N + 4)) / (0.3 B L^2)
        ms = 0.0136 / (0.3 beta B L) * sqrt(L / (X0 sin(theta)))

    and is applied to the curvature `1/pT`, which is what the tracker
    measures, before projecting back to the total momentum.
    """

    magnetic_field: float
    n_layers: int
    resolution: float
    radiation_length: float
    inner_radius: float
    outer_radius: float
    z_min: float
    z_max: float
    min_points: int = 3
    angular_resolution: float = 0.0
    acceptance: AcceptanceZone = field(default_factory=AcceptanceZone)
    species_filter: SpeciesFilter = field(default_factory=_charged_only)
    name: str = "tracker"

    def __post_init__(self) -> None:
        if self.magnetic_field <= 0.0:
            raise ConfigurationError(f"Tracker '{self.name}' needs a positive magnetic field.")
        if self.n_layers < 2:
            raise ConfigurationError(f"Tracker '{self.name}' needs at least two layers.")
        if self.resolution < 0.0 or self.radiation_length <= 0.0:
            raise ConfigurationError(f"Tracker '{self.name}' has invalid resolution or radiation length.")
        if not 0.0 <= self.inner_radius < self.outer_radius:
            raise ConfigurationError(f"Tracker '{self.name}' needs 0 <= inner_radius < outer_radius.")
        if self.z_min >= self.z_max:
            raise ConfigurationError(f"Tracker '{self.name}' needs z_min < z_max.")
        if self.min_points < 2 or self.angular_resolution < 0.0:
            raise ConfigurationError(f"Tracker '{self.name}' has invalid min_points or angular resolution.")

    @abstractmethod
    def geometry(self, theta: float) -> tuple[float, int]:
        """Return `(transverse lever arm, number of hits)` for a track at `theta`."""

    def accepts(self, particle: ExactParticle, properties: ParticleProperties) -> bool:
        if properties.charge == 0.0 or particle.pt <= 0.0:
            return False
        if not (self.species_filter.allows(particle.species, properties.charge) and self.acceptance.contains(particle)):
            return False
        lever_arm, n_hits = self.geometry(particle.theta)
        return n_hits >= self.min_points and lever_arm > 0.0

    def relative_pt_resolution(self, particle: ExactParticle, properties: ParticleProperties) -> float:
        """sigma(pT)/pT at the particle's true kinematics."""
        lever_arm, n_hits = self.geometry(particle.theta)
        bl = CURVATURE_CONSTANT * self.magnetic_field * lever_arm
        intrinsic = self.resolution * particle.pt * math.sqrt(720.0 / (n_hits + 4)) / (bl * lever_arm)
        mass = particle.m if particle.m > 0.0 else properties.mass
        beta = particle.p / math.hypot(particle.p, mass)
        ms = MS_SCALE_GEV / (beta * bl) * math.sqrt(lever_arm / (self.radiation_length * math.sin(particle.theta)))
        return math.hypot(intrinsic, ms)

    def apply(self, particle: ExactParticle, rng: Random, properties: ParticleProperties) -> DeviceResponse:
        if not self.accepts(particle, properties):
            return NOT_ACCEPTED
        rel = self.relative_pt_resolution(particle, properties)
        curvature = 1.0 / particle.pt
        for _ in range(MAX_REDRAWS):
            smeared_curvature = rng.gauss(curvature, rel * curvature) if rel > 0.0 else curvature
            theta = smear_value(Kinematic.THETA, particle.theta, self.angular_resolution, rng)
            if smeared_curvature > 0.0 and theta is not None and math.sin(theta) > 0.0:
                break
        else:
            logger.debug("%s: no physical track drawn for particle %d", self.name, particle.index)
            return DeviceResponse(accepted=True)
        phi = smear_value(Kinematic.PHI, particle.phi, self.angular_resolution, rng)
        assert phi is not None
        p = 1.0 / (smeared_curvature * math.sin(theta))
        return DeviceResponse(
            accepted=True,
            measurements={
                Kinematic.P: Measurement(p, rel * particle.p),
                Kinematic.THETA: Measurement(theta, self.angular_resolution),
                Kinematic.PHI: Measurement(phi, self.angular_resolution),
            },
        )


@dataclass(frozen=True)
class RadialTracker(_Tracker):
    """Barrel tracker: equally spaced cylindrical layers between the two radii."""

    name: str = "radial_tracker"
    kind: ClassVar[DeviceKind] = DeviceKind.RADIAL_TRACKER

    def geometry(self, theta: float) -> tuple[float, int]:
        sin_theta = math.sin(theta)
        if sin_theta <= 0.0:
            return 0.0, 0
        cot_theta = math.cos(theta) / sin_theta
        step = (self.outer_radius - self.inner_radius) / (self.n_layers - 1)
        hits = [
            r
            for r in (self.inner_radius + i * step for i in range(self.n_layers))
            if self.z_min <= r * cot_theta <= self.z_max
        ]
        if not hits:
            return 0.0, 0
        return hits[-1] - hits[0], len(hits)


@dataclass(frozen=True)
class PlanarTracker(_Tracker):
    """Forward/backward tracker: equally spaced disks between `z_min` and `z_max`."""

    name: str = "planar_tracker"
    kind: ClassVar[DeviceKind] = DeviceKind.PLANAR_TRACKER

    def geometry(self, theta: float) -> tuple[float, int]:
        cos_theta = math.cos(theta)
        if cos_theta == 0.0:
            return 0.0, 0
        tan_theta = math.sin(theta) / cos_theta
        step = (self.z_max - self.z_min) / (self.n_layers - 1)
        radii = []
        for i in range(self.n_layers):
            z = self.z_min + i * step
            if z * cos_theta <= 0.0:
                continue
            r = z * tan_theta
            if self.inner_radius <= r <= self.outer_radius:
                radii.append(r)
        if not radii:
            return 0.0, 0
        return max(radii) - min(radii), len(radii)


@dataclass(frozen=True)
class Bremsstrahlung:
    """Radiative energy loss of electrons in `radiation_lengths` of material.

    Photons above `epsilon` (GeV) follow `dN/dk = t (4/3 (1/k - 1/E) + k/E^2)`;
    their count is Poisson distributed and each photon is emitted from the
    energy remaining after the previous ones. An optional `resolution`
    formula then smears the degraded energy. Measurements carry
    `sigma=None`, since the loss is not Gaussian.
    """

    epsilon: float = 0.01
    radiation_lengths: float = 0.01
    resolution: FormulaExpression | None = None
    acceptance: AcceptanceZone = field(default_factory=AcceptanceZone)
    species_filter: SpeciesFilter = field(default_factory=_electrons_only)
    name: str = "bremsstrahlung"
    kind: ClassVar[DeviceKind] = DeviceKind.BREMSSTRAHLUNG

    def __post_init__(self) -> None:
        if self.epsilon <= 0.0 or self.radiation_lengths < 0.0:
            raise ConfigurationError(f"Bremsstrahlung '{self.name}' needs epsilon > 0 and radiation_lengths >= 0.")
        if self.resolution is not None:
            object.__setattr__(self, "resolution", as_formula(self.resolution))

    def accepts(self, particle: ExactParticle, properties: ParticleProperties) -> bool:
        return self.species_filter.allows(particle.species, properties.charge) and self.acceptance.contains(
            particle
        )

    def mean_photon_count(self, energy: float) -> float:
        """Expected number of photons above `epsilon` for an electron of `energy`."""
        if energy <= self.epsilon:
            return 0.0
        eps = self.epsilon
        integral = (
            (4.0 / 3.0) * math.log(energy / eps)
            - (4.0 / 3.0) * (energy - eps) / energy
            + (energy * energy - eps * eps) / (2.0 * energy * energy)
        )
        return self.radiation_lengths * integral

    def sample_photon_energy(self, energy: float, rng: Random) -> float:
        """Draw one photon energy in `[epsilon, energy]` from the spectrum."""
        ratio = energy / self.epsilon
        while True:
            k = self.epsilon * ratio ** rng.random()
            u = k / energy
            # Proposal is 1/k; accept with k * f(k) normalised to its maximum 4/3.
            if rng.random() * (4.0 / 3.0) <= 4.0 / 3.0 - (4.0 / 3.0) * u + u * u:
                return k

    def radiated_energy(self, energy: float, rng: Random) -> float:
        """Total energy radiated by an electron of `energy`."""
        mean = self.mean_photon_count(energy)
        n_photons = int(np.random.default_rng(rng.getrandbits(64)).poisson(mean)) if mean > 0.0 else 0
        remaining = energy
        for _ in range(n_photons):
            if remaining <= self.epsilon:
                break
            remaining -= self.sample_photon_energy(remaining, rng)
        return energy - remaining

    def apply(self, particle: ExactParticle, rng: Random, properties: ParticleProperties) -> DeviceResponse:
        if not self.accepts(particle, properties):
            return NOT_ACCEPTED
        energy = particle.e - self.radiated_energy(particle.e, rng)
        if self.resolution is not None:
            try:
                sigma = self.resolution.evaluate(particle)
            except EvaluationError as exc:
                logger.debug("%s: no energy resolution for particle %d: %s", self.name, particle.index, exc)
                return DeviceResponse(accepted=True)
            smeared = smear_value(Kinematic.E, energy, sigma, rng) if sigma >= 0.0 else None
            if smeared is None:
                return DeviceResponse(accepted=True)
            energy = smeared
        mass = particle.m if particle.m > 0.0 else properties.mass
        momentum = math.sqrt(max(energy * energy - mass * mass, 0.0))
        return DeviceResponse(
            accepted=True,
            measurements={Kinematic.E: Measurement(energy, None), Kinematic.P: Measurement(momentum, None)},
        )


Smearer = Union[Device, PerfectDevice, RadialTracker, PlanarTracker, Bremsstrahlung]

DEVICE_CLASSES: dict[DeviceKind, type] = {
    DeviceKind.DEVICE: Device,
    DeviceKind.PERFECT: PerfectDevice,
    DeviceKind.PLANAR_TRACKER: PlanarTracker,
    DeviceKind.RADIAL_TRACKER: RadialTracker,
    DeviceKind.BREMSSTRAHLUNG: Bremsstrahlung,
}
