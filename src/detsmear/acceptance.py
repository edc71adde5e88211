"""Acceptance zones and species filters that decide whether a device acts."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping

from .errors import ConfigurationError
from .models import ExactParticle, Kinematic


@dataclass(frozen=True)
class Range:
    """Inclusive `[low, high]` interval; infinite bounds mean unbounded."""

    low: float = -math.inf
    high: float = math.inf

    def __post_init__(self) -> None:
        low = float(self.low)
        high = float(self.high)
        if math.isnan(low) or math.isnan(high):
            raise ConfigurationError("Acceptance range bounds must not be NaN.")
        if low > high:
            raise ConfigurationError(f"Acceptance range low={low} exceeds high={high}.")
        object.__setattr__(self, "low", low)
        object.__setattr__(self, "high", high)

    @classmethod
    def parse(cls, value: Any) -> "Range":
        """Build a range from `[low, high]`, where `None` means unbounded."""
        if isinstance(value, Range):
            return value
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise ConfigurationError(f"Acceptance range must be a [low, high] pair, got {value!r}.")
        low, high = value
        try:
            return cls(
                low=-math.inf if low is None else float(low),
                high=math.inf if high is None else float(high),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Acceptance range {value!r} must contain numbers or null.") from exc

    @property
    def unbounded(self) -> bool:
        return self.low == -math.inf and self.high == math.inf

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high


@dataclass(frozen=True)
class AcceptanceZone:
    """Conjunction of per-dimension ranges evaluated on true kinematics.

    A zone without ranges accepts every particle. Zones combine with `&`
    (logical AND); combining disjoint ranges yields a zone that accepts
    nothing.
    """

    ranges: Mapping[Kinematic, Range] = field(default_factory=dict)
    is_void: bool = False

    @classmethod
    def from_bounds(cls, **bounds: Any) -> "AcceptanceZone":
        """Build a zone from keyword bounds, e.g. `from_bounds(theta=(0.1, 3.0))`."""
        return cls({Kinematic.from_name(name): Range.parse(value) for name, value in bounds.items()})

    def contains(self, particle: ExactParticle) -> bool:
        if self.is_void:
            return False
        return all(rng.contains(particle.value(kin)) for kin, rng in self.ranges.items())

    def __and__(self, other: "AcceptanceZone") -> "AcceptanceZone":
        return AcceptanceZone.intersection(self, other)

    @staticmethod
    def intersection(*zones: "AcceptanceZone") -> "AcceptanceZone":
        """Return the zone accepting exactly what every input zone accepts."""
        lows: dict[Kinematic, float] = {}
        highs: dict[Kinematic, float] = {}
        for zone in zones:
            if zone.is_void:
                return AcceptanceZone(is_void=True)
            for kin, rng in zone.ranges.items():
                lows[kin] = max(lows.get(kin, -math.inf), rng.low)
                highs[kin] = min(highs.get(kin, math.inf), rng.high)
        if any(lows[kin] > highs[kin] for kin in lows):
            return AcceptanceZone(is_void=True)
        return AcceptanceZone({kin: Range(lows[kin], highs[kin]) for kin in lows})


class Genre(str, Enum):
    """Broad particle class a device responds to."""

    ALL = "all"
    ELECTROMAGNETIC = "electromagnetic"
    HADRONIC = "hadronic"

    def matches(self, species: int) -> bool:
        code = abs(species)
        if self is Genre.ELECTROMAGNETIC:
            return code in (11, 22)
        if self is Genre.HADRONIC:
            return code > 110
        return True


class ChargeFilter(str, Enum):
    """Charge requirement a device places on particles."""

    ALL = "all"
    CHARGED = "charged"
    NEUTRAL = "neutral"

    def matches(self, charge: float) -> bool:
        if self is ChargeFilter.CHARGED:
            return charge != 0.0
        if self is ChargeFilter.NEUTRAL:
            return charge == 0.0
        return True


_GENRE_ALIASES = {"em": Genre.ELECTROMAGNETIC, "hadron": Genre.HADRONIC, "had": Genre.HADRONIC}


def parse_genre(value: "Genre | str") -> Genre:
    if isinstance(value, Genre):
        return value
    key = str(value).strip().lower()
    if key in _GENRE_ALIASES:
        return _GENRE_ALIASES[key]
    try:
        return Genre(key)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown species genre '{value}'.") from exc


def parse_charge_filter(value: "ChargeFilter | str") -> ChargeFilter:
    if isinstance(value, ChargeFilter):
        return value
    try:
        return ChargeFilter(str(value).strip().lower())
    except ValueError as exc:
        raise ConfigurationError(f"Unknown charge filter '{value}'.") from exc


@dataclass(frozen=True)
class SpeciesFilter:
    """Species restriction of a device: genre, charge and an optional whitelist."""

    genre: Genre = Genre.ALL
    charge: ChargeFilter = ChargeFilter.ALL
    species: frozenset[int] | None = None

    @classmethod
    def build(
        cls,
        genre: "Genre | str" = Genre.ALL,
        charge: "ChargeFilter | str" = ChargeFilter.ALL,
        species: Iterable[int] | None = None,
    ) -> "SpeciesFilter":
        """Validate and normalise filter settings."""
        whitelist = None
        if species is not None:
            try:
                whitelist = frozenset(int(s) for s in species)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"Species whitelist must contain integers, got {species!r}.") from exc
            if not whitelist:
                raise ConfigurationError("Species whitelist must not be empty.")
        return cls(parse_genre(genre), parse_charge_filter(charge), whitelist)

    def allows(self, species: int, charge: float) -> bool:
        if self.species is not None and species not in self.species:
            return False
        return self.genre.matches(species) and self.charge.matches(charge)
