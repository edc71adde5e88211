"""Semi-inclusive kinematics of generated particles relative to the exchanged boson."""

from __future__ import annotations

import math

from .beams import BeamParticles
from .models import ExactParticle, SemiInclusiveQuantities, TrueEvent
from .physics import LorentzVector, angle_between, cross, dot3, norm, to_rest_frame, wrap_phi


def hermes_phi(
    hadron: tuple[float, float, float],
    lepton: tuple[float, float, float],
    boson: tuple[float, float, float],
) -> float | None:
    """Angle in [0, 2pi) between the lepton and hadron planes around the boson direction.

    The sign follows the HERMES convention, positive when the hadron lies on
    the side of `boson x lepton`. `None` when either plane is undefined.
    """
    lepton_normal = cross(boson, lepton)
    hadron_normal = cross(boson, hadron)
    if norm(lepton_normal) == 0.0 or norm(hadron_normal) == 0.0:
        return None
    sine = norm(boson) * dot3(lepton_normal, hadron)
    return wrap_phi(math.atan2(sine, dot3(lepton_normal, hadron_normal)))


def semi_inclusive_quantities(
    particle: ExactParticle,
    event: TrueEvent,
    beams: BeamParticles,
) -> SemiInclusiveQuantities:
    parent = event.parent_of(particle)
    parent_id = parent.species if parent is not None else 0
    if beams.lepton is None or beams.hadron is None or beams.boson is None:
        return SemiInclusiveQuantities(parent_id=parent_id)
    p = particle.four_vector()
    hadron = beams.hadron.four_vector()
    q = beams.boson.four_vector()
    p_dot_q = hadron.dot(q)
    z = hadron.dot(p) / p_dot_q if p_dot_q != 0.0 else None
    if hadron.e <= 0.0 or hadron.mass2 <= 0.0:
        return SemiInclusiveQuantities(z=z, parent_id=parent_id)

    p_rest = to_rest_frame(p, hadron)
    q_rest = to_rest_frame(q, hadron)
    k_rest = to_rest_frame(beams.lepton.four_vector(), hadron)
    theta_gamma = angle_between(p_rest.vect, q_rest.vect)
    return SemiInclusiveQuantities(
        z=z,
        pt_vs_gamma=norm(p_rest.vect) * math.sin(theta_gamma),
        theta_gamma=theta_gamma,
        phi_prf=hermes_phi(p_rest.vect, k_rest.vect, q_rest.vect),
        x_f=_feynman_x(p, q, hadron),
        parent_id=parent_id,
    )


def _feynman_x(p: LorentzVector, q: LorentzVector, hadron: LorentzVector) -> float | None:
    """`2 pz*/W` with pz* along the boson in the boson-hadron centre-of-mass frame."""
    centre = q + hadron
    if centre.e <= 0.0 or centre.mass2 <= 0.0:
        return None
    q_star = to_rest_frame(q, centre).vect
    q_norm = norm(q_star)
    if q_norm == 0.0:
        return None
    pz_star = dot3(to_rest_frame(p, centre).vect, q_star) / q_norm
    return 2.0 * pz_star / math.sqrt(centre.mass2)


def event_semi_inclusive(
    event: TrueEvent,
    beams: BeamParticles,
    indices: frozenset[int] | None = None,
) -> dict[int, SemiInclusiveQuantities]:
    """Quantities for the particles of `event`, restricted to `indices` when given."""
    return {
        prt.index: semi_inclusive_quantities(prt, event, beams)
        for prt in event.particles
        if indices is None or prt.index in indices
    }
