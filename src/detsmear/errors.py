"""Error taxonomy for detector configuration, smearing and reconstruction.

Acceptance rejection is a normal outcome and has no exception type: devices
and the detector report it through their `accepted` flags.
"""

from __future__ import annotations


class DetsmearError(Exception):
    """Base class for all package errors."""


class ParseError(DetsmearError, ValueError):
    """Malformed resolution or probability formula text (fatal at configuration)."""


class ConfigurationError(DetsmearError, ValueError):
    """Malformed detector, device, acceptance or PID configuration."""


class EvaluationError(DetsmearError, ArithmeticError):
    """Formula is mathematically undefined for the given inputs.

    Callers recover locally by leaving the affected dimension unobserved.
    """


class ReconstructionInvalid(DetsmearError):
    """Event kinematics cannot be computed from the accepted particles."""
