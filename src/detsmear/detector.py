"""Detector: an ordered set of devices, a PID model and a kinematics method."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from random import Random
from typing import Sequence

from .devices import Smearer
from .errors import ConfigurationError
from .kinematics import KinematicsReconstructor, ReconstructionMethod
from .models import ExactParticle, Kinematic, Measurement, SmearedParticle
from .physics import circular_weighted_mean
from .pid import UNKNOWN_SPECIES, ParticleTable, PerfectIdentifier, PIDModel

logger = logging.getLogger(__name__)


class CombinationPolicy(str, Enum):
    """How measurements of one dimension by several devices are merged."""

    INVERSE_VARIANCE = "inverse_variance"
    LAST_WRITER = "last_writer"

    @classmethod
    def parse(cls, value: "CombinationPolicy | str") -> "CombinationPolicy":
        if isinstance(value, CombinationPolicy):
            return value
        key = str(value).strip().lower().replace("-", "_")
        if key == "last_writer_wins":
            key = "last_writer"
        try:
            return cls(key)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown combination policy '{value}'.") from exc


def combine_measurements(
    kinematic: Kinematic,
    measurements: Sequence[Measurement],
    policy: CombinationPolicy = CombinationPolicy.INVERSE_VARIANCE,
) -> Measurement:
    """Merge the measurements of one dimension, in device order.

    Inverse-variance weighting needs every sigma; a measurement without one
    makes the dimension fall back to last-writer-wins. A zero sigma is an
    exact measurement and the first one wins outright.
    """
    if not measurements:
        raise ValueError("combine_measurements needs at least one measurement.")
    if policy is CombinationPolicy.LAST_WRITER or any(m.sigma is None for m in measurements):
        return measurements[-1]
    if len(measurements) == 1:
        return measurements[0]
    for meas in measurements:
        if meas.sigma == 0.0:
            return meas
    weights = [1.0 / meas.sigma**2 for meas in measurements if meas.sigma is not None]
    total = math.fsum(weights)
    if kinematic is Kinematic.PHI:
        value = circular_weighted_mean([meas.value for meas in measurements], weights)
    else:
        value = math.fsum(w * meas.value for w, meas in zip(weights, measurements)) / total
    return Measurement(value, 1.0 / math.sqrt(total))


@dataclass(frozen=True)
class Detector:
    """Read-only detector configuration, safe to share between worker threads."""

    devices: tuple[Smearer, ...]
    pid: PIDModel = field(default_factory=PerfectIdentifier)
    reconstruction: ReconstructionMethod = ReconstructionMethod.ELECTRON
    combination: CombinationPolicy = CombinationPolicy.INVERSE_VARIANCE
    particle_table: ParticleTable = field(default_factory=ParticleTable, compare=False)

    def __post_init__(self) -> None:
        devices = tuple(self.devices)
        if not devices:
            raise ConfigurationError("Detector needs at least one device.")
        for idx, device in enumerate(devices):
            if not callable(getattr(device, "apply", None)):
                raise ConfigurationError(f"Detector device #{idx} has no apply() method: {device!r}")
        if not callable(getattr(self.pid, "identify", None)):
            raise ConfigurationError(f"PID model has no identify() method: {self.pid!r}")
        object.__setattr__(self, "devices", devices)
        object.__setattr__(self, "reconstruction", ReconstructionMethod.parse(self.reconstruction))
        object.__setattr__(self, "combination", CombinationPolicy.parse(self.combination))

    @property
    def reconstructor(self) -> KinematicsReconstructor:
        return KinematicsReconstructor(self.reconstruction)

    def smear(self, particle: ExactParticle, rng: Random) -> tuple[SmearedParticle, bool]:
        """Run every device on `particle`; accepted iff at least one device acted."""
        properties = self.particle_table.lookup(particle.species)
        collected: dict[Kinematic, list[Measurement]] = {}
        accepted = False
        for device in self.devices:
            response = device.apply(particle, rng, properties)
            if not response.accepted:
                continue
            accepted = True
            for kin, meas in response.measurements.items():
                collected.setdefault(kin, []).append(meas)
        if not accepted:
            return self._skeleton(particle, UNKNOWN_SPECIES), False

        values: dict[Kinematic, float] = {}
        sigmas: dict[Kinematic, float | None] = {}
        for kin in sorted(collected, key=_dimension_order):
            combined = combine_measurements(kin, collected[kin], self.combination)
            values[kin] = combined.value
            sigmas[kin] = combined.sigma
        measured = frozenset(values)

        identified = self.pid.identify(particle, rng)
        identified_props = self.particle_table.lookup(identified)
        mass = identified_props.mass if identified_props.known else None
        derive_kinematics(values, mass)
        return (
            SmearedParticle(
                index=particle.index,
                status=particle.status,
                species=particle.species,
                identified_species=identified,
                values=values,
                sigmas=sigmas,
                measured=measured,
                parent_index=particle.parent_index,
                first_child=particle.first_child,
                last_child=particle.last_child,
                vertex=particle.vertex,
            ),
            True,
        )

    @staticmethod
    def _skeleton(particle: ExactParticle, identified: int) -> SmearedParticle:
        return SmearedParticle(
            index=particle.index,
            status=particle.status,
            species=particle.species,
            identified_species=identified,
            parent_index=particle.parent_index,
            first_child=particle.first_child,
            last_child=particle.last_child,
            vertex=particle.vertex,
        )


def derive_kinematics(values: dict[Kinematic, float], mass: float | None) -> None:
    """Fill unobserved dimensions that follow from observed ones, in place.

    Mass-dependent conversions (E <-> P) need `mass`; pass `None` when the
    identified species is not known.
    """
    for _ in range(3):
        before = len(values)
        p, theta = values.get(Kinematic.P), values.get(Kinematic.THETA)
        pt, pz = values.get(Kinematic.PT), values.get(Kinematic.PZ)
        if theta is None and pt is not None and pz is not None:
            values[Kinematic.THETA] = math.atan2(pt, pz)
        if p is None:
            if pt is not None and pz is not None:
                values[Kinematic.P] = math.hypot(pt, pz)
            elif pt is not None and theta is not None and math.sin(theta) > 0.0:
                values[Kinematic.P] = pt / math.sin(theta)
            elif pz is not None and theta is not None and math.cos(theta) != 0.0 and pz / math.cos(theta) >= 0.0:
                values[Kinematic.P] = pz / math.cos(theta)
            elif mass is not None and Kinematic.E in values and values[Kinematic.E] >= mass:
                energy = values[Kinematic.E]
                values[Kinematic.P] = math.sqrt(energy * energy - mass * mass)
        p, theta = values.get(Kinematic.P), values.get(Kinematic.THETA)
        if p is not None and theta is not None:
            values.setdefault(Kinematic.PT, p * math.sin(theta))
            values.setdefault(Kinematic.PZ, p * math.cos(theta))
        if p is not None and mass is not None:
            values.setdefault(Kinematic.E, math.hypot(p, mass))
        if len(values) == before:
            return


_ORDER = {kin: idx for idx, kin in enumerate(Kinematic)}


def _dimension_order(kin: Kinematic) -> int:
    return _ORDER[kin]
