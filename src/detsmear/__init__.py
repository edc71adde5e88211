"""Public package exports for the detector-smearing framework."""

from .acceptance import AcceptanceZone, ChargeFilter, Genre, Range, SpeciesFilter
from .beams import BeamIdentifier, BeamParticles
from .detector import CombinationPolicy, Detector, combine_measurements
from .devices import (
    Bremsstrahlung,
    Device,
    DeviceKind,
    DeviceResponse,
    PerfectDevice,
    PlanarTracker,
    RadialTracker,
)
from .errors import ConfigurationError, DetsmearError, EvaluationError, ParseError, ReconstructionInvalid
from .formula import FormulaExpression
from .kinematics import KinematicsReconstructor, ReconstructionMethod
from .models import (
    BeamParameters,
    ExactParticle,
    Kinematic,
    KinematicsResult,
    Measurement,
    SemiInclusiveQuantities,
    SmearedEvent,
    SmearedParticle,
    TrueEvent,
)
from .physics import LorentzVector
from .pid import (
    ConfusionMatrixIdentifier,
    FormulaIdentifier,
    ParticleProperties,
    ParticleTable,
    PerfectIdentifier,
    PIDBin,
    species_from_name,
)
from .pipeline import SmearingPipeline, event_rng
from .sidis import event_semi_inclusive, hermes_phi, semi_inclusive_quantities

__all__ = [
    "AcceptanceZone",
    "Range",
    "Genre",
    "ChargeFilter",
    "SpeciesFilter",
    "BeamIdentifier",
    "BeamParticles",
    "CombinationPolicy",
    "Detector",
    "combine_measurements",
    "Device",
    "PerfectDevice",
    "PlanarTracker",
    "RadialTracker",
    "Bremsstrahlung",
    "DeviceKind",
    "DeviceResponse",
    "DetsmearError",
    "ParseError",
    "ConfigurationError",
    "EvaluationError",
    "ReconstructionInvalid",
    "FormulaExpression",
    "KinematicsReconstructor",
    "ReconstructionMethod",
    "BeamParameters",
    "ExactParticle",
    "Kinematic",
    "KinematicsResult",
    "Measurement",
    "SemiInclusiveQuantities",
    "SmearedEvent",
    "SmearedParticle",
    "TrueEvent",
    "LorentzVector",
    "ParticleProperties",
    "ParticleTable",
    "PerfectIdentifier",
    "ConfusionMatrixIdentifier",
    "PIDBin",
    "FormulaIdentifier",
    "species_from_name",
    "SmearingPipeline",
    "event_rng",
    "semi_inclusive_quantities",
    "event_semi_inclusive",
    "hermes_phi",
]
