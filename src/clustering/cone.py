"""
Iterative seeded-cone jet finding.

Every particle above the seed threshold starts a cone search. The cone
axis is moved to the energy-weighted centroid of the particles inside
it until it stops moving (or the iteration cap is hit). Particles stay
in the pool for every seed, so the resulting proto-jets may overlap;
overlaps are resolved afterwards by ``src.clustering.overlap``.
"""

import logging
import math

import numpy as np

from src.clustering.angular import (
    angular_distances,
    delta_phi,
    energy_weighted_centroid,
    normalize_azimuth,
)
from src.clustering.errors import InvalidParameterError
from src.clustering.model import Jet, ProtoJet, validate_particles, validate_radius
from src.clustering.overlap import resolve_overlaps as _resolve_overlaps


logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 100
DEFAULT_CONVERGENCE_TOLERANCE = 0.01


def _validate_cone_parameters(R, seed_threshold, max_iterations, convergence_tolerance):
    validate_radius(R)
    if not math.isfinite(seed_threshold) or seed_threshold < 0.0:
        raise InvalidParameterError(
            f"Seed threshold must be non-negative, got {seed_threshold}"
        )
    if (
        not math.isfinite(max_iterations)
        or int(max_iterations) != max_iterations
        or max_iterations < 1
    ):
        raise InvalidParameterError(
            f"max_iterations must be a positive integer, got {max_iterations}"
        )
    if not math.isfinite(convergence_tolerance) or convergence_tolerance <= 0.0:
        raise InvalidParameterError(
            f"Convergence tolerance must be positive, got {convergence_tolerance}"
        )


class _ConeSearch:
    """Particle pool with cached coordinate arrays for repeated cone queries."""

    def __init__(self, particles, R):
        self.particles = particles
        self.R = R
        self.rapidities = np.array([p.rapidity for p in particles], dtype=float)
        self.azimuths = np.array([p.azimuth for p in particles], dtype=float)

    def collect(self, rapidity, azimuth):
        """Particles with Delta R <= R from the axis, in input order."""
        if not self.particles:
            return []
        inside = angular_distances(self.rapidities, self.azimuths, rapidity, azimuth) <= self.R
        return [p for p, keep in zip(self.particles, inside) if keep]

    def iterate(self, seed, max_iterations, tolerance):
        """
        Move the cone axis from the seed to a stable position.

        Returns ``(rapidity, azimuth, iterations, converged)``.
        """
        rapidity = seed.rapidity
        azimuth = normalize_azimuth(seed.azimuth)
        iterations = 0
        converged = False

        while iterations < max_iterations:
            in_cone = self.collect(rapidity, azimuth)
            if not in_cone:
                break

            new_rapidity, new_azimuth, _ = energy_weighted_centroid(in_cone, azimuth)
            iterations += 1

            shift_y = abs(new_rapidity - rapidity)
            shift_phi = abs(delta_phi(new_azimuth, azimuth))
            rapidity, azimuth = new_rapidity, new_azimuth

            if shift_y < tolerance and shift_phi < tolerance:
                converged = True
                break

        return rapidity, azimuth, iterations, converged


def run_seeded_cone(
    particles,
    R,
    seed_threshold,
    max_iterations=DEFAULT_MAX_ITERATIONS,
    convergence_tolerance=DEFAULT_CONVERGENCE_TOLERANCE,
):
    """
    Find proto-jets with the iterative seeded-cone algorithm.

    Parameters
    ----------
    particles : list of Particle
        Input particles. They are not modified.
    R : float
        Cone radius in (rapidity, azimuth) units.
    seed_threshold : float
        Minimum energy for a particle to start a cone search.
    max_iterations : int
        Cap on axis updates per seed. Hitting the cap is not an error;
        the proto-jet is kept with ``converged=False``.
    convergence_tolerance : float
        The search stops once both the rapidity and the azimuth shift of
        the axis are below this value.

    Returns
    -------
    list of ProtoJet
        One proto-jet per distinct stable cone, in seed order (descending
        seed energy). Seeds that end on a cone identical to an earlier
        one, or on an empty cone, add nothing.
    """
    _validate_cone_parameters(R, seed_threshold, max_iterations, convergence_tolerance)
    particles = validate_particles(particles)

    # sorted() is stable, so equal-energy seeds keep their input order
    seeds = sorted(
        (p for p in particles if p.energy >= seed_threshold),
        key=lambda p: p.energy,
        reverse=True,
    )
    logger.debug("Seeded cone: %d particles, %d seeds, R=%g", len(particles), len(seeds), R)

    search = _ConeSearch(particles, R)
    proto_jets = []
    found = set()

    for seed in seeds:
        rapidity, azimuth, iterations, converged = search.iterate(
            seed, int(max_iterations), convergence_tolerance
        )
        if not converged:
            logger.debug(
                "Cone from seed %r stopped after %d iterations without converging",
                seed.source_id,
                iterations,
            )

        constituents = tuple(search.collect(rapidity, azimuth))
        if not constituents:
            logger.debug("Cone from seed %r is empty", seed.source_id)
            continue

        key = frozenset(p.source_id for p in constituents)
        if key in found:
            continue
        found.add(key)

        proto_jets.append(
            ProtoJet(
                rapidity=rapidity,
                azimuth=azimuth,
                energy=math.fsum(p.energy for p in constituents),
                constituents=constituents,
                seed_energy=seed.energy,
                iterations=iterations,
                converged=converged,
            )
        )

    logger.debug("Seeded cone produced %d proto-jets", len(proto_jets))
    return proto_jets


def find_cone_jets(
    particles,
    R,
    seed_threshold,
    max_iterations=DEFAULT_MAX_ITERATIONS,
    convergence_tolerance=DEFAULT_CONVERGENCE_TOLERANCE,
    resolve_overlaps=True,
    merge_fraction=0.5,
):
    """
    Full cone pipeline: proto-jet search followed, when requested, by
    split/merge overlap resolution. Returns jets sorted by energy.
    """
    proto_jets = run_seeded_cone(
        particles, R, seed_threshold, max_iterations, convergence_tolerance
    )
    if resolve_overlaps:
        return _resolve_overlaps(proto_jets, R, merge_fraction=merge_fraction)

    jets = [Jet.from_proto_jet(p) for p in proto_jets]
    return sorted(jets, key=lambda j: j.energy, reverse=True)
