"""Beam and scattered-lepton identification in a generator record."""

from __future__ import annotations

from dataclasses import dataclass

from .models import ExactParticle, TrueEvent

LEPTON_SPECIES = frozenset({11, 13, 15})
NUCLEON_SPECIES = frozenset({2212, 2112})
BOSON_SPECIES = frozenset({22, 23, 24})
GLUON = 21
DOCUMENTATION_STATUS = 21


@dataclass(frozen=True)
class BeamParticles:
    """Incident lepton, incident hadron, exchanged boson and scattered lepton of one event.

    Any entry may be `None` when the record does not contain it.
    """

    lepton: ExactParticle | None = None
    hadron: ExactParticle | None = None
    boson: ExactParticle | None = None
    scattered_lepton: ExactParticle | None = None

    @property
    def complete(self) -> bool:
        return None not in (self.lepton, self.hadron, self.boson, self.scattered_lepton)


@dataclass(frozen=True)
class BeamIdentifier:
    """Classifies generator particles by species, status and ancestry."""

    lepton_species: int = 11

    def is_beam_lepton(self, prt: ExactParticle) -> bool:
        return prt.species == self.lepton_species and prt.parent_index < 1 and prt.status != 1

    def is_beam_nucleon(self, prt: ExactParticle) -> bool:
        return prt.species in NUCLEON_SPECIES and prt.parent_index < 1 and prt.status != 1

    def is_virtual_photon(self, prt: ExactParticle, lepton: ExactParticle | None = None) -> bool:
        """Exchanged boson: photon/Z/W radiated by the beam lepton, or a documentation-status boson."""
        if abs(prt.species) not in BOSON_SPECIES or prt.status == 1:
            return False
        if lepton is not None and prt.parent_index == lepton.index:
            return True
        return prt.status == DOCUMENTATION_STATUS

    def is_scattered_lepton(self, prt: ExactParticle) -> bool:
        return prt.status == 1 and prt.species == self.lepton_species

    def skip_particle(self, prt: ExactParticle) -> bool:
        """Partons (quarks and gluons) are never passed to the detector."""
        code = abs(prt.species)
        return code < 10 or code == GLUON

    def identify_beams(self, event: TrueEvent) -> BeamParticles:
        lepton = next((prt for prt in event.particles if self.is_beam_lepton(prt)), None)
        hadron = next((prt for prt in event.particles if self.is_beam_nucleon(prt)), None)
        boson = next((prt for prt in event.particles if self.is_virtual_photon(prt, lepton)), None)
        return BeamParticles(lepton, hadron, boson, self.find_scattered_lepton(event, lepton, boson))

    def find_scattered_lepton(
        self,
        event: TrueEvent,
        lepton: ExactParticle | None = None,
        boson: ExactParticle | None = None,
    ) -> ExactParticle | None:
        """Final-state lepton descending from the beam lepton or boson, else the most energetic one."""
        candidates = [prt for prt in event.particles if self.is_scattered_lepton(prt)]
        if not candidates:
            return None
        ancestors = {prt.index for prt in (lepton, boson) if prt is not None}
        for prt in candidates:
            if prt.parent_index in ancestors:
                return prt
        return max(candidates, key=lambda prt: prt.e)
