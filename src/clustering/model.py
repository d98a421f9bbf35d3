"""
Data model for jet clustering.

Particles are immutable inputs. ProtoJet, Jet and PseudoParticle are
three separate structures: a proto-jet is a possibly-overlapping cone
candidate, a jet is a final output object and a pseudo-particle is the
mergeable working element of the kT recombination.
"""

import math
from dataclasses import dataclass, field
from typing import Hashable, Iterable, Optional, Tuple

from src.clustering.angular import energy_weighted_centroid, normalize_azimuth
from src.clustering.errors import InvalidParameterError


@dataclass(frozen=True)
class Particle:
    """
    An energy deposit in (rapidity, azimuth) space.

    Attributes
    ----------
    rapidity : float
        Rapidity y.
    azimuth : float
        Azimuthal angle phi in (-pi, pi].
    energy : float
        Deposited energy [GeV], strictly positive.
    source_id : hashable
        Opaque identifier of the originating cell, used only for overlap
        and deduplication bookkeeping.
    """
    rapidity: float
    azimuth: float
    energy: float
    source_id: Hashable


def unique_constituents(*groups: Iterable[Particle]) -> Tuple[Particle, ...]:
    """Concatenate particle groups keeping the first particle per source_id."""
    seen = {}
    for group in groups:
        for particle in group:
            if particle.source_id not in seen:
                seen[particle.source_id] = particle
    return tuple(seen.values())


def validate_particles(particles) -> list:
    """
    Check an input particle list before clustering.

    Returns the particles as a list. Raises InvalidParameterError on
    non-finite coordinates, non-positive energies or duplicated source ids.
    """
    particles = list(particles)
    seen = set()
    for particle in particles:
        if not (math.isfinite(particle.rapidity) and math.isfinite(particle.azimuth)):
            raise InvalidParameterError(
                f"Particle {particle.source_id!r} has non-finite coordinates"
            )
        if not math.isfinite(particle.energy) or particle.energy <= 0.0:
            raise InvalidParameterError(
                f"Particle {particle.source_id!r} has non-positive energy {particle.energy}"
            )
        if particle.source_id in seen:
            raise InvalidParameterError(
                f"Duplicate source_id {particle.source_id!r} in input particles"
            )
        seen.add(particle.source_id)
    return particles


def validate_radius(R):
    if not math.isfinite(R) or R <= 0.0:
        raise InvalidParameterError(f"Radius R must be positive, got {R}")


@dataclass(frozen=True)
class ProtoJet:
    """
    Cone candidate produced by one seed, before overlap resolution.

    The axis is the last position of the iterative cone search and the
    constituents are the particles within R of that axis.
    """
    rapidity: float
    azimuth: float
    energy: float
    constituents: Tuple[Particle, ...]
    seed_energy: float
    iterations: int
    converged: bool = True

    @property
    def source_ids(self):
        return frozenset(p.source_id for p in self.constituents)


@dataclass(frozen=True)
class Jet:
    """
    Final clustering output.

    ``seed_energy`` and ``iterations`` are carried over from the cone
    search when a proto-jet survives overlap resolution unchanged; ``pt``
    is set by the kT recombination.
    """
    rapidity: float
    azimuth: float
    energy: float
    constituents: Tuple[Particle, ...]
    seed_energy: Optional[float] = None
    iterations: Optional[int] = None
    pt: Optional[float] = None

    @property
    def source_ids(self):
        return frozenset(p.source_id for p in self.constituents)

    @classmethod
    def from_constituents(cls, constituents, reference_azimuth=None, **extra):
        """Build a jet whose kinematics are recomputed from its constituents."""
        constituents = unique_constituents(constituents)
        rapidity, azimuth, energy = energy_weighted_centroid(
            constituents, reference_azimuth
        )
        return cls(rapidity, azimuth, energy, constituents, **extra)

    @classmethod
    def from_proto_jet(cls, proto_jet):
        if isinstance(proto_jet, Jet):
            return proto_jet
        return cls(
            rapidity=proto_jet.rapidity,
            azimuth=proto_jet.azimuth,
            energy=proto_jet.energy,
            constituents=proto_jet.constituents,
            seed_energy=proto_jet.seed_energy,
            iterations=proto_jet.iterations,
        )


@dataclass(frozen=True)
class PseudoParticle:
    """Working element of the kT recombination."""
    index: int
    rapidity: float
    azimuth: float
    energy: float
    pt: float
    constituents: Tuple[Particle, ...] = field(default_factory=tuple)

    @classmethod
    def from_particle(cls, index, particle):
        return cls(
            index=index,
            rapidity=particle.rapidity,
            azimuth=normalize_azimuth(particle.azimuth),
            energy=particle.energy,
            pt=particle.energy,
            constituents=(particle,),
        )

    def combine(self, other, index):
        """
        Recombine two pseudo-particles: constituents are joined, the
        centroid is energy-weighted and pt is additive.
        """
        constituents = self.constituents + other.constituents
        reference = self.azimuth if self.energy >= other.energy else other.azimuth
        rapidity, azimuth, energy = energy_weighted_centroid(constituents, reference)
        return PseudoParticle(
            index=index,
            rapidity=rapidity,
            azimuth=azimuth,
            energy=energy,
            pt=self.pt + other.pt,
            constituents=constituents,
        )

    def to_jet(self):
        rapidity, azimuth, energy = energy_weighted_centroid(
            self.constituents, self.azimuth
        )
        return Jet(rapidity, azimuth, energy, self.constituents, pt=self.pt)
