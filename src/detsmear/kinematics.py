"""DIS event kinematics (Q2, x, y, W2) from smeared final-state particles.

Three methods are provided; each is a pure function of the accepted
particles, the beams and the index of the scattered lepton:
- electron: scattered lepton energy and angles only
- Jacquet-Blondel: hadronic final state only
- double-angle: lepton polar angle and the hadronic angle.

The lepton beam travels along -z and the hadron beam along +z, so polar
angles are measured from the hadron direction.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

from .errors import ConfigurationError, ReconstructionInvalid
from .models import BeamParameters, KinematicsResult, SmearedParticle
from .physics import LorentzVector

logger = logging.getLogger(__name__)


class ReconstructionMethod(str, Enum):
    ELECTRON = "electron"
    JACQUET_BLONDEL = "jacquetBlondel"
    DOUBLE_ANGLE = "doubleAngle"

    @classmethod
    def parse(cls, value: "ReconstructionMethod | str") -> "ReconstructionMethod":
        """Resolve a method name or alias (`null`, `nm`, `jb`, `da`, ...)."""
        if isinstance(value, ReconstructionMethod):
            return value
        key = str(value).strip().lower().replace("_", "").replace("-", "")
        try:
            return _ALIASES[key]
        except KeyError as exc:
            supported = ", ".join(sorted(_ALIASES))
            raise ConfigurationError(
                f"Unknown reconstruction method '{value}'. Supported names: {supported}"
            ) from exc


_ALIASES = {
    "electron": ReconstructionMethod.ELECTRON,
    "null": ReconstructionMethod.ELECTRON,
    "nm": ReconstructionMethod.ELECTRON,
    "jacquetblondel": ReconstructionMethod.JACQUET_BLONDEL,
    "jb": ReconstructionMethod.JACQUET_BLONDEL,
    "doubleangle": ReconstructionMethod.DOUBLE_ANGLE,
    "da": ReconstructionMethod.DOUBLE_ANGLE,
}


def electron_method(
    particles: Sequence[SmearedParticle],
    beams: BeamParameters,
    scattered_lepton_index: int | None,
) -> KinematicsResult:
    method = ReconstructionMethod.ELECTRON.value
    lepton = _scattered_lepton(particles, scattered_lepton_index)
    theta, phi = lepton.theta, lepton.phi
    if theta is None or phi is None:
        raise ReconstructionInvalid("scattered lepton angles not observed")
    mass = max(beams.lepton.mass, 0.0)
    energy, momentum = lepton.e, lepton.p
    if energy is None and momentum is None:
        raise ReconstructionInvalid("scattered lepton energy not observed")
    if energy is None:
        energy = math.hypot(momentum, mass)
    if momentum is None:
        momentum = math.sqrt(max(energy * energy - mass * mass, 0.0))
    outgoing = LorentzVector.from_spherical(momentum, theta, phi, energy)
    q = beams.lepton - outgoing
    q2 = -q.mass2
    p_dot_q = beams.hadron.dot(q)
    p_dot_k = beams.hadron.dot(beams.lepton)
    if p_dot_q <= 0.0 or p_dot_k <= 0.0:
        raise ReconstructionInvalid("non-positive energy transfer")
    y = p_dot_q / p_dot_k
    x = q2 / (2.0 * p_dot_q)
    w2 = (beams.hadron + q).mass2
    return _validated(method, q2, x, y, w2)


def jacquet_blondel_method(
    particles: Sequence[SmearedParticle],
    beams: BeamParameters,
    scattered_lepton_index: int | None,
) -> KinematicsResult:
    method = ReconstructionMethod.JACQUET_BLONDEL.value
    sigma, px, py = _hadronic_sums(particles, scattered_lepton_index)
    y = sigma / (2.0 * beams.lepton_energy)
    if y >= 1.0:
        raise ReconstructionInvalid(f"y = {y:.6g} outside (0, 1)")
    q2 = (px * px + py * py) / (1.0 - y)
    return _from_q2_y(method, q2, y, beams)


def double_angle_method(
    particles: Sequence[SmearedParticle],
    beams: BeamParameters,
    scattered_lepton_index: int | None,
) -> KinematicsResult:
    method = ReconstructionMethod.DOUBLE_ANGLE.value
    lepton = _scattered_lepton(particles, scattered_lepton_index)
    theta = lepton.theta
    if theta is None:
        raise ReconstructionInvalid("scattered lepton polar angle not observed")
    sigma, px, py = _hadronic_sums(particles, scattered_lepton_index)
    pt2 = px * px + py * py
    if pt2 + sigma * sigma <= 0.0:
        raise ReconstructionInvalid("hadronic angle undefined")
    cos_gamma = (pt2 - sigma * sigma) / (pt2 + sigma * sigma)
    gamma = math.acos(max(-1.0, min(1.0, cos_gamma)))
    denominator = math.sin(gamma) + math.sin(theta) - math.sin(theta + gamma)
    if denominator <= 0.0:
        raise ReconstructionInvalid("degenerate double-angle configuration")
    energy = beams.lepton_energy
    q2 = 4.0 * energy * energy * math.sin(gamma) * (1.0 + math.cos(theta)) / denominator
    y = math.sin(theta) * (1.0 - cos_gamma) / denominator
    return _from_q2_y(method, q2, y, beams)


Method = Callable[[Sequence[SmearedParticle], BeamParameters, "int | None"], KinematicsResult]

METHODS: dict[ReconstructionMethod, Method] = {
    ReconstructionMethod.ELECTRON: electron_method,
    ReconstructionMethod.JACQUET_BLONDEL: jacquet_blondel_method,
    ReconstructionMethod.DOUBLE_ANGLE: double_angle_method,
}


@dataclass(frozen=True)
class KinematicsReconstructor:
    """Applies one configured method to each event independently."""

    method: ReconstructionMethod = ReconstructionMethod.ELECTRON

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", ReconstructionMethod.parse(self.method))

    def reconstruct(
        self,
        particles: Sequence[SmearedParticle],
        beams: BeamParameters,
        scattered_lepton_index: int | None,
    ) -> KinematicsResult:
        """Return the event kinematics, flagged invalid when they cannot be computed."""
        try:
            return METHODS[self.method](particles, beams, scattered_lepton_index)
        except ReconstructionInvalid as exc:
            logger.debug("%s kinematics invalid: %s", self.method.value, exc)
            return KinematicsResult.invalid(self.method.value, str(exc))


def _scattered_lepton(particles: Sequence[SmearedParticle], index: int | None) -> SmearedParticle:
    if index is None:
        raise ReconstructionInvalid("no scattered lepton in the event")
    for prt in particles:
        if prt.index == index:
            return prt
    raise ReconstructionInvalid("scattered lepton not accepted")


def _hadronic_sums(particles: Sequence[SmearedParticle], lepton_index: int | None) -> tuple[float, float, float]:
    """Return `(sum(E - pz), sum(px), sum(py))` over observed hadronic final-state particles."""
    sigma = px = py = 0.0
    n_used = 0
    for prt in particles:
        if prt.index == lepton_index or prt.status != 1:
            continue
        energy = prt.e if prt.e is not None else prt.p
        if energy is None or prt.pz is None or prt.px is None or prt.py is None:
            continue
        sigma += energy - prt.pz
        px += prt.px
        py += prt.py
        n_used += 1
    if n_used == 0:
        raise ReconstructionInvalid("no observed hadronic final state")
    return sigma, px, py


def _from_q2_y(method: str, q2: float, y: float, beams: BeamParameters) -> KinematicsResult:
    if y <= 0.0:
        raise ReconstructionInvalid(f"y = {y:.6g} outside (0, 1]")
    mass2 = beams.hadron_mass ** 2
    reduced_s = beams.s - mass2
    x = q2 / (y * reduced_s)
    w2 = mass2 + y * reduced_s - q2
    return _validated(method, q2, x, y, w2)


def _validated(method: str, q2: float, x: float, y: float, w2: float) -> KinematicsResult:
    if not all(math.isfinite(v) for v in (q2, x, y, w2)):
        raise ReconstructionInvalid("non-finite kinematics")
    if q2 <= 0.0:
        raise ReconstructionInvalid(f"Q2 = {q2:.6g} is not positive")
    if not 0.0 < y <= 1.0:
        raise ReconstructionInvalid(f"y = {y:.6g} outside (0, 1]")
    if x <= 0.0:
        raise ReconstructionInvalid(f"x = {x:.6g} is not positive")
    if w2 < 0.0:
        raise ReconstructionInvalid(f"W2 = {w2:.6g} is negative")
    return KinematicsResult(method=method, valid=True, q2=q2, x=x, y=y, w2=w2)
