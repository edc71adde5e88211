"""Unit tests for particle properties and PID models."""

from __future__ import annotations

import math
import random
import unittest

from detsmear import (
    ConfigurationError,
    ConfusionMatrixIdentifier,
    ExactParticle,
    FormulaExpression,
    FormulaIdentifier,
    ParticleProperties,
    ParticleTable,
    PerfectIdentifier,
    PIDBin,
    species_from_name,
)


def _particle(species: int, p: float = 2.0) -> ExactParticle:
    return ExactParticle(index=4, status=1, species=species, px=p, py=0.0, pz=0.0, e=math.hypot(p, 0.14))


class TestParticleTable(unittest.TestCase):
    """Validate species property lookups."""

    def test_builtin_entries(self) -> None:
        """Common species resolve with their mass and charge."""
        table = ParticleTable()
        pion = table.lookup(211)
        self.assertEqual(pion.name, "pi+")
        self.assertAlmostEqual(pion.mass, 0.13957, places=5)
        self.assertEqual(pion.charge, 1.0)
        self.assertEqual(table.charge(-11), 1.0)
        self.assertTrue(table.contains(2212))

    def test_unknown_species_defaults(self) -> None:
        """Unknown species get mass 0, charge 0 and are flagged unknown."""
        table = ParticleTable()
        props = table.lookup(9999999)
        self.assertFalse(props.known)
        self.assertEqual(props.mass, 0.0)
        self.assertEqual(props.charge, 0.0)
        self.assertFalse(table.contains(0))

    def test_tables_are_isolated(self) -> None:
        """Custom entries and fallbacks belong to one table instance."""
        custom = ParticleTable([ParticleProperties("X", 3.0, -1.0, 9000001)])
        self.assertTrue(custom.contains(9000001))
        self.assertFalse(custom.contains(211))
        self.assertFalse(ParticleTable().contains(9000001))
        with_fallback = ParticleTable(fallback=lambda code: ParticleProperties("Y", 1.5, 0.0, code) if code == 42 else None)
        self.assertEqual(with_fallback.mass(42), 1.5)
        self.assertFalse(with_fallback.contains(43))

    def test_species_from_name(self) -> None:
        """Names, aliases and numeric strings resolve to PDG codes."""
        self.assertEqual(species_from_name("kaon"), 321)
        self.assertEqual(species_from_name("pi-"), -211)
        self.assertEqual(species_from_name("-2212"), -2212)
        self.assertEqual(species_from_name(22), 22)
        with self.assertRaises(ConfigurationError):
            species_from_name("bogus")


class TestPerfectIdentifier(unittest.TestCase):
    """Validate perfect identification."""

    def test_returns_true_species_without_draw(self) -> None:
        """The rng state is untouched."""
        rng = random.Random(3)
        state = rng.getstate()
        for species in (11, -211, 2212, 9999999):
            self.assertEqual(PerfectIdentifier().identify(_particle(species), rng), species)
        self.assertEqual(rng.getstate(), state)


class TestConfusionMatrixIdentifier(unittest.TestCase):
    """Validate table-driven identification."""

    def test_identity_matrix(self) -> None:
        """A unit matrix always reports the true species."""
        pid = ConfusionMatrixIdentifier.from_matrix((211, 321, 2212), [[1, 0, 0], [0, 1, 0], [0, 0, 1]])
        rng = random.Random(1)
        for species in (211, 321, 2212):
            for _ in range(50):
                self.assertEqual(pid.identify(_particle(species), rng), species)

    def test_sampling_frequencies(self) -> None:
        """Observed frequencies follow the matrix row of the true species."""
        pid = ConfusionMatrixIdentifier.from_matrix((211, 321), [[0.8, 0.2], [0.3, 0.7]])
        rng = random.Random(21)
        draws = [pid.identify(_particle(211), rng) for _ in range(5000)]
        self.assertAlmostEqual(draws.count(211) / len(draws), 0.8, delta=0.03)
        self.assertEqual(set(draws), {211, 321})

    def test_single_uniform_draw(self) -> None:
        """One identification consumes exactly one uniform number."""
        pid = ConfusionMatrixIdentifier.from_matrix((211, 321), [[0.5, 0.5], [0.5, 0.5]])
        rng, reference = random.Random(8), random.Random(8)
        pid.identify(_particle(211), rng)
        reference.random()
        self.assertEqual(rng.getstate(), reference.getstate())

    def test_zero_probability_column_is_never_chosen(self) -> None:
        """Entries with probability zero never occur."""
        pid = ConfusionMatrixIdentifier.from_matrix((211,), [[0.0, 1.0, 0.0]], observed_species=(11, 211, 321))
        rng = random.Random(4)
        self.assertEqual({pid.identify(_particle(211), rng) for _ in range(500)}, {211})

    def test_unknown_column_and_missing_species(self) -> None:
        """Ambiguous identification and species absent from the table map to unknown."""
        pid = ConfusionMatrixIdentifier.from_matrix((211,), [[0.0, 1.0]], observed_species=(211, 0))
        rng = random.Random(2)
        self.assertEqual(pid.identify(_particle(211), rng), 0)
        self.assertEqual(pid.identify(_particle(2212), rng), 0)

    def test_momentum_bins(self) -> None:
        """The bin covering the true momentum is used; uncovered momenta map to unknown."""
        pid = ConfusionMatrixIdentifier(
            species=(211, 321),
            bins=(
                PIDBin(0.0, 5.0, ((1.0, 0.0), (0.0, 1.0))),
                PIDBin(5.0, 10.0, ((0.0, 1.0), (1.0, 0.0))),
            ),
            unknown=-1,
        )
        rng = random.Random(6)
        self.assertEqual(pid.identify(_particle(211, p=2.0), rng), 211)
        self.assertEqual(pid.identify(_particle(211, p=7.0), rng), 321)
        self.assertEqual(pid.identify(_particle(211, p=12.0), rng), -1)

    def test_validation(self) -> None:
        """Rows must be non-negative, normalised and of the right shape."""
        bad_matrices = [
            [[0.5, 0.4], [0.5, 0.5]],
            [[1.2, -0.2], [0.5, 0.5]],
            [[1.0, 0.0]],
            [[1.0], [1.0]],
        ]
        for matrix in bad_matrices:
            with self.subTest(matrix=matrix):
                with self.assertRaises(ConfigurationError):
                    ConfusionMatrixIdentifier.from_matrix((211, 321), matrix)
        # Rows within the normalisation tolerance are accepted.
        ConfusionMatrixIdentifier.from_matrix((211,), [[0.3333333, 0.6666667]], observed_species=(211, 321))
        with self.assertRaises(ConfigurationError):
            ConfusionMatrixIdentifier.from_matrix((211, 211), [[1.0, 0.0], [0.0, 1.0]])


class TestFormulaIdentifier(unittest.TestCase):
    """Validate probability-formula identification."""

    def test_certain_and_impossible(self) -> None:
        """Probability 1 keeps the species, probability 0 gives unknown."""
        rng = random.Random(9)
        self.assertEqual(FormulaIdentifier(FormulaExpression("1")).identify(_particle(321), rng), 321)
        self.assertEqual(FormulaIdentifier(FormulaExpression("0"), unknown=-99).identify(_particle(321), rng), -99)

    def test_invalid_probability_maps_to_unknown(self) -> None:
        """Out-of-range or undefined probabilities do not fail the particle."""
        rng = random.Random(9)
        self.assertEqual(FormulaIdentifier(FormulaExpression("2")).identify(_particle(321), rng), 0)
        self.assertEqual(FormulaIdentifier(FormulaExpression("sqrt(-P)")).identify(_particle(321), rng), 0)

    def test_momentum_dependent_probability(self) -> None:
        """Identification efficiency can fall with momentum."""
        pid = FormulaIdentifier(FormulaExpression("max(0, 1 - P / 10)"))
        rng = random.Random(10)
        low = sum(pid.identify(_particle(321, p=1.0), rng) == 321 for _ in range(2000))
        high = sum(pid.identify(_particle(321, p=9.0), rng) == 321 for _ in range(2000))
        self.assertGreater(low, 1700)
        self.assertLess(high, 300)

    def test_species_restriction(self) -> None:
        """Species outside the restriction are reported unknown."""
        pid = FormulaIdentifier(FormulaExpression("1"), species=frozenset({321}))
        rng = random.Random(1)
        self.assertEqual(pid.identify(_particle(211), rng), 0)
        self.assertEqual(pid.identify(_particle(321), rng), 321)


if __name__ == "__main__":
    unittest.main()
