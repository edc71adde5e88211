"""Physics/math helpers shared by the smearing and reconstruction code."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

TWO_PI = 2.0 * math.pi


@dataclass(frozen=True)
class LorentzVector:
    """Simple 4-vector with convenience properties and arithmetic."""

    px: float
    py: float
    pz: float
    e: float

    def __add__(self, other: "LorentzVector") -> "LorentzVector":
        """Component-wise 4-vector addition."""
        return LorentzVector(
            self.px + other.px,
            self.py + other.py,
            self.pz + other.pz,
            self.e + other.e,
        )

    def __sub__(self, other: "LorentzVector") -> "LorentzVector":
        """Component-wise 4-vector subtraction."""
        return LorentzVector(
            self.px - other.px,
            self.py - other.py,
            self.pz - other.pz,
            self.e - other.e,
        )

    def dot(self, other: "LorentzVector") -> float:
        """Minkowski product with metric (+, -, -, -)."""
        return self.e * other.e - self.px * other.px - self.py * other.py - self.pz * other.pz

    @property
    def p2(self) -> float:
        """Squared 3-momentum magnitude."""
        return self.px * self.px + self.py * self.py + self.pz * self.pz

    @property
    def pt(self) -> float:
        """Transverse momentum."""
        return math.hypot(self.px, self.py)

    @property
    def mass2(self) -> float:
        """Invariant mass squared."""
        return self.e * self.e - self.p2

    @property
    def mass(self) -> float:
        """Invariant mass with signed handling for small negative mass2 values."""
        m2 = self.mass2
        return m2**0.5 if m2 >= 0.0 else -((-m2) ** 0.5)

    @property
    def vect(self) -> tuple[float, float, float]:
        """Spatial components."""
        return self.px, self.py, self.pz

    @property
    def boost_vector(self) -> tuple[float, float, float]:
        """Velocity (units of c) of the frame in which this vector is at rest."""
        return self.px / self.e, self.py / self.e, self.pz / self.e

    def boost(self, bx: float, by: float, bz: float) -> "LorentzVector":
        """Lorentz boost by velocity `(bx, by, bz)` in units of c."""
        b2 = bx * bx + by * by + bz * bz
        if b2 >= 1.0:
            raise ValueError(f"Boost velocity {math.sqrt(b2):.6g} is not below the speed of light.")
        if b2 == 0.0:
            return self
        gamma = 1.0 / math.sqrt(1.0 - b2)
        bp = bx * self.px + by * self.py + bz * self.pz
        factor = (gamma - 1.0) * bp / b2 + gamma * self.e
        return LorentzVector(
            self.px + factor * bx,
            self.py + factor * by,
            self.pz + factor * bz,
            gamma * (self.e + bp),
        )

    @classmethod
    def from_spherical(cls, p: float, theta: float, phi: float, e: float) -> "LorentzVector":
        """Build a 4-vector from momentum magnitude, polar and azimuthal angle."""
        pt = p * math.sin(theta)
        return cls(pt * math.cos(phi), pt * math.sin(phi), p * math.cos(theta), e)


def sum_lorentz(vectors: Iterable[LorentzVector]) -> LorentzVector:
    """Sum an iterable of Lorentz vectors."""
    total = LorentzVector(0.0, 0.0, 0.0, 0.0)
    for vec in vectors:
        total = total + vec
    return total


def wrap_phi(phi: float) -> float:
    """Map an azimuthal angle into [0, 2pi)."""
    wrapped = math.fmod(phi, TWO_PI)
    if wrapped < 0.0:
        wrapped += TWO_PI
    # fmod of a tiny negative number plus 2pi can round up to exactly 2pi.
    return 0.0 if wrapped >= TWO_PI else wrapped


def pseudorapidity(p: float, pz: float) -> float:
    """Pseudorapidity from momentum magnitude and longitudinal component."""
    if p <= 0.0:
        return 0.0
    if p == abs(pz):
        return math.copysign(math.inf, pz)
    return 0.5 * math.log((p + pz) / (p - pz))


def rapidity(e: float, pz: float) -> float:
    """Rapidity; signed infinity when `E <= |pz|` (massless along the beam axis)."""
    if e - abs(pz) <= 0.0:
        return math.copysign(math.inf, pz)
    return 0.5 * math.log((e + pz) / (e - pz))


def eta_from_theta(theta: float) -> float:
    """Pseudorapidity from a polar angle in [0, pi]."""
    if theta <= 0.0:
        return math.inf
    if theta >= math.pi:
        return -math.inf
    return -math.log(math.tan(0.5 * theta))


def circular_weighted_mean(angles: Iterable[float], weights: Iterable[float]) -> float:
    """Weighted mean of azimuthal angles computed on the unit circle."""
    sx = 0.0
    sy = 0.0
    for angle, w in zip(angles, weights, strict=True):
        sx += w * math.cos(angle)
        sy += w * math.sin(angle)
    return wrap_phi(math.atan2(sy, sx))


def to_rest_frame(vec: LorentzVector, frame: LorentzVector) -> LorentzVector:
    """Express `vec` in the rest frame of the time-like vector `frame` (axes kept parallel)."""
    if frame.e <= 0.0 or frame.mass2 <= 0.0:
        raise ValueError(f"Cannot boost into the rest frame of non-time-like {frame}.")
    bx, by, bz = frame.boost_vector
    return vec.boost(-bx, -by, -bz)


def dot3(a: tuple[float, float, float], b: tuple[float, float, float]) -> float:
    return a[0] * b[0] + a[1] * b[1] + a[2] * b[2]


def cross(a: tuple[float, float, float], b: tuple[float, float, float]) -> tuple[float, float, float]:
    return (
        a[1] * b[2] - a[2] * b[1],
        a[2] * b[0] - a[0] * b[2],
        a[0] * b[1] - a[1] * b[0],
    )


def norm(a: tuple[float, float, float]) -> float:
    return math.sqrt(dot3(a, a))


def angle_between(a: tuple[float, float, float], b: tuple[float, float, float]) -> float:
    """Opening angle in [0, pi]; zero when either vector vanishes."""
    return math.atan2(norm(cross(a, b)), dot3(a, b))
