"""Unit tests for DIS kinematics reconstruction."""

from __future__ import annotations

import math
import unittest

from detsmear import (
    BeamParameters,
    ConfigurationError,
    ExactParticle,
    Kinematic,
    KinematicsReconstructor,
    ReconstructionMethod,
    SmearedParticle,
)
from detsmear.models import SMEARABLE

LEPTON_ENERGY = 10.0
HADRON_ENERGY = 100.0
SCATTERED_ENERGY = 8.0
SCATTERED_THETA = 2.8


def _smeared(index: int, species: int, px: float, py: float, pz: float, e: float, dims=SMEARABLE) -> SmearedParticle:
    exact = ExactParticle(index=index, status=1, species=species, px=px, py=py, pz=pz, e=e)
    return SmearedParticle(
        index=index,
        status=1,
        species=species,
        identified_species=species,
        values={kin: exact.value(kin) for kin in dims},
        measured=frozenset(dims),
    )


def _scattered_electron(dims=SMEARABLE) -> SmearedParticle:
    sin_t, cos_t = math.sin(SCATTERED_THETA), math.cos(SCATTERED_THETA)
    return _smeared(5, 11, SCATTERED_ENERGY * sin_t, 0.0, SCATTERED_ENERGY * cos_t, SCATTERED_ENERGY, dims)


def _balancing_hadron(index: int = 6) -> SmearedParticle:
    """Massless hadron carrying the transverse momentum and E - pz missing from the electron."""
    pt = SCATTERED_ENERGY * math.sin(SCATTERED_THETA)
    e_minus_pz = 2.0 * LEPTON_ENERGY - SCATTERED_ENERGY * (1.0 - math.cos(SCATTERED_THETA))
    e_plus_pz = pt * pt / e_minus_pz
    return _smeared(index, 211, -pt, 0.0, 0.5 * (e_plus_pz - e_minus_pz), 0.5 * (e_plus_pz + e_minus_pz))


def _expected() -> tuple[float, float]:
    """Massless-beam expectation for (Q2, y)."""
    q2 = 2.0 * LEPTON_ENERGY * SCATTERED_ENERGY * (1.0 + math.cos(SCATTERED_THETA))
    y = 1.0 - SCATTERED_ENERGY / (2.0 * LEPTON_ENERGY) * (1.0 - math.cos(SCATTERED_THETA))
    return q2, y


class TestReconstructionMethods(unittest.TestCase):
    """Validate the three methods on a consistent event."""

    def setUp(self) -> None:
        self.beams = BeamParameters.from_energies(LEPTON_ENERGY, HADRON_ENERGY)
        self.particles = [_scattered_electron(), _balancing_hadron()]

    def _check(self, method: str) -> None:
        result = KinematicsReconstructor(method).reconstruct(self.particles, self.beams, 5)
        q2, y = _expected()
        self.assertTrue(result.valid, result.reason)
        self.assertAlmostEqual(result.q2, q2, delta=1e-3 * q2)
        self.assertAlmostEqual(result.y, y, delta=1e-3 * y)
        x = q2 / (4.0 * LEPTON_ENERGY * HADRON_ENERGY * y)
        self.assertAlmostEqual(result.x, x, delta=2e-3 * x)
        self.assertAlmostEqual(result.w2, self.beams.hadron_mass**2 + result.y * (self.beams.s - self.beams.hadron_mass**2) - result.q2, delta=1e-2)
        self.assertIsNone(result.reason)

    def test_electron_method(self) -> None:
        """Electron method from the scattered lepton alone."""
        self._check("electron")

    def test_jacquet_blondel_method(self) -> None:
        """Jacquet-Blondel from the hadronic final state alone."""
        self._check("jb")

    def test_double_angle_method(self) -> None:
        """Double-angle from the lepton and hadronic angles."""
        self._check("doubleAngle")

    def test_electron_method_with_energy_and_angles_only(self) -> None:
        """The lepton momentum is not required when its energy is observed."""
        particles = [_scattered_electron(dims=(Kinematic.E, Kinematic.THETA, Kinematic.PHI))]
        result = KinematicsReconstructor(ReconstructionMethod.ELECTRON).reconstruct(particles, self.beams, 5)
        self.assertTrue(result.valid, result.reason)


class TestInvalidKinematics(unittest.TestCase):
    """Missing inputs flag the event instead of producing zeros."""

    def setUp(self) -> None:
        self.beams = BeamParameters.from_energies(LEPTON_ENERGY, HADRON_ENERGY)

    def _assert_invalid(self, result) -> None:
        self.assertFalse(result.valid)
        self.assertIsNone(result.q2)
        self.assertIsNone(result.x)
        self.assertIsNone(result.y)
        self.assertIsNone(result.w2)
        self.assertIsNone(result.w)
        self.assertTrue(result.reason)

    def test_jacquet_blondel_without_hadrons(self) -> None:
        """An accepted lepton but no hadronic final state is invalid, not zero."""
        result = KinematicsReconstructor("jacquetBlondel").reconstruct([_scattered_electron()], self.beams, 5)
        self._assert_invalid(result)
        self.assertEqual(result.method, "jacquetBlondel")

    def test_electron_method_without_lepton(self) -> None:
        """No scattered lepton, or a lepton that was not accepted, is invalid."""
        reconstructor = KinematicsReconstructor("electron")
        self._assert_invalid(reconstructor.reconstruct([_balancing_hadron()], self.beams, None))
        self._assert_invalid(reconstructor.reconstruct([_balancing_hadron()], self.beams, 5))

    def test_electron_method_without_angles(self) -> None:
        """An energy-only lepton measurement is not enough."""
        particles = [_scattered_electron(dims=(Kinematic.E,))]
        self._assert_invalid(KinematicsReconstructor("electron").reconstruct(particles, self.beams, 5))

    def test_double_angle_without_hadrons(self) -> None:
        """The hadronic angle needs at least one observed hadron."""
        self._assert_invalid(KinematicsReconstructor("da").reconstruct([_scattered_electron()], self.beams, 5))

    def test_unphysical_y_is_invalid(self) -> None:
        """Hadronic E - pz above twice the beam energy gives y >= 1."""
        hadron = _smeared(6, 211, 1.0, 0.0, -30.0, math.hypot(1.0, 30.0))
        self._assert_invalid(KinematicsReconstructor("jb").reconstruct([hadron], self.beams, None))

    def test_hadrons_missing_components_are_ignored(self) -> None:
        """Hadrons without the needed observables do not count."""
        hadron = _smeared(6, 211, 1.0, 0.0, -1.0, math.sqrt(2.0), dims=(Kinematic.E,))
        self._assert_invalid(KinematicsReconstructor("jb").reconstruct([hadron], self.beams, None))


class TestMethodNames(unittest.TestCase):
    """Validate method names and aliases."""

    def test_aliases(self) -> None:
        """All documented aliases resolve."""
        cases = {
            "electron": ReconstructionMethod.ELECTRON,
            "null": ReconstructionMethod.ELECTRON,
            "NM": ReconstructionMethod.ELECTRON,
            "jacquetBlondel": ReconstructionMethod.JACQUET_BLONDEL,
            "jacquet_blondel": ReconstructionMethod.JACQUET_BLONDEL,
            "jb": ReconstructionMethod.JACQUET_BLONDEL,
            "doubleAngle": ReconstructionMethod.DOUBLE_ANGLE,
            "da": ReconstructionMethod.DOUBLE_ANGLE,
        }
        for name, method in cases.items():
            with self.subTest(name=name):
                self.assertIs(ReconstructionMethod.parse(name), method)
        with self.assertRaises(ConfigurationError):
            ReconstructionMethod.parse("sigma")


if __name__ == "__main__":
    unittest.main()
