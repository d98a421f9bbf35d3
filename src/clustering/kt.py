"""
kT sequential recombination.

Inclusive kT clustering in (rapidity, azimuth) space with energy used
as the transverse momentum proxy.

Distance metrics:
    d_iB = pt_i^2
    d_ij = min(pt_i^2, pt_j^2) * (Delta R_ij / R)^2

At each step the global minimum over all d_iB and d_ij is found. A beam
minimum promotes the pseudo-particle to a final jet (when its pt passes
``pt_cut``), a pair minimum recombines the two pseudo-particles. Every
step removes at least one element from the working set, so the loop
runs at most once per input particle.

Each step recomputes all pair distances, giving O(n^3) overall. That is
fine for grid-bounded inputs; a distance cache keyed by pseudo-particle
index would be the first thing to add for larger events.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from src.clustering.angular import angular_distance
from src.clustering.errors import DegenerateMinimumError, InvalidParameterError
from src.clustering.model import (
    Jet,
    PseudoParticle,
    validate_particles,
    validate_radius,
)


logger = logging.getLogger(__name__)

BEAM = "beam"
MERGE = "merge"


@dataclass
class RecombinationStep:
    """
    One step of the clustering history.

    Attributes
    ----------
    step : int
        Position of the step in the sequence.
    kind : str
        BEAM (one parent, no child) or MERGE (two parents, child is the
        index of the new pseudo-particle).
    distance : float
        The minimum d_iB or d_ij that selected this step.
    accepted : bool
        For BEAM steps, whether the pseudo-particle passed pt_cut.
    """
    step: int
    kind: str
    parents: Tuple[int, ...]
    child: Optional[int]
    distance: float
    accepted: bool = False


@dataclass
class RecombinationResult:
    """Container for kT clustering results."""
    jets: List[Jet]
    rejected: List[PseudoParticle]
    history: List[RecombinationStep] = field(default_factory=list)
    parameters: Dict = field(default_factory=dict)

    @property
    def n_jets(self) -> int:
        return len(self.jets)


def beam_distance(p: PseudoParticle) -> float:
    return p.pt * p.pt


def pair_distance(p1: PseudoParticle, p2: PseudoParticle, R: float) -> float:
    delta_r = angular_distance(p1.rapidity, p1.azimuth, p2.rapidity, p2.azimuth)
    return min(p1.pt * p1.pt, p2.pt * p2.pt) * (delta_r / R) ** 2


def _find_minimum(active: Dict[int, PseudoParticle], R: float):
    """
    Scan the working set in order and return ``(distance, kind, i, j)``.
    Strict comparison keeps the first minimum encountered.
    """
    min_dist = math.inf
    min_kind = None
    min_i = min_j = None

    members = list(active.values())
    for a, p_i in enumerate(members):
        d_iB = beam_distance(p_i)
        if d_iB < min_dist:
            min_dist, min_kind, min_i, min_j = d_iB, BEAM, p_i.index, None

        for p_j in members[a + 1:]:
            d_ij = pair_distance(p_i, p_j, R)
            if d_ij < min_dist:
                min_dist, min_kind, min_i, min_j = d_ij, MERGE, p_i.index, p_j.index

    return min_dist, min_kind, min_i, min_j


def cluster_sequence(particles, R, pt_cut) -> RecombinationResult:
    """
    Run the kT recombination and keep the full clustering history.

    Parameters
    ----------
    particles : list of Particle
        Input particles. Energy is used as pt.
    R : float
        Radius parameter.
    pt_cut : float
        Minimum pt for a beam-promoted pseudo-particle to be kept as a
        jet. Pseudo-particles below it are returned in ``rejected``.

    Returns
    -------
    RecombinationResult
        Jets sorted by descending energy, rejected pseudo-particles and
        the clustering history.
    """
    validate_radius(R)
    if not math.isfinite(pt_cut) or pt_cut < 0.0:
        raise InvalidParameterError(f"pt_cut must be non-negative, got {pt_cut}")
    particles = validate_particles(particles)

    active: Dict[int, PseudoParticle] = {
        i: PseudoParticle.from_particle(i, p) for i, p in enumerate(particles)
    }
    next_idx = len(particles)

    jets: List[Jet] = []
    rejected: List[PseudoParticle] = []
    history: List[RecombinationStep] = []
    step = 0

    while active:
        min_dist, min_kind, min_i, min_j = _find_minimum(active, R)

        if min_kind == BEAM:
            candidate = active.pop(min_i)
            accepted = candidate.pt >= pt_cut
            if accepted:
                jets.append(candidate.to_jet())
            else:
                rejected.append(candidate)
            history.append(RecombinationStep(
                step=step, kind=BEAM, parents=(min_i,), child=None,
                distance=min_dist, accepted=accepted,
            ))
        elif min_kind == MERGE:
            p1 = active.pop(min_i)
            p2 = active.pop(min_j)
            active[next_idx] = p1.combine(p2, next_idx)
            history.append(RecombinationStep(
                step=step, kind=MERGE, parents=(min_i, min_j), child=next_idx,
                distance=min_dist,
            ))
            next_idx += 1
        else:
            raise DegenerateMinimumError(
                f"No finite minimum distance with {len(active)} pseudo-particles left"
            )

        step += 1

    logger.debug(
        "kT clustering: %d particles, %d steps, %d jets, %d rejected",
        len(particles), step, len(jets), len(rejected),
    )

    jets.sort(key=lambda j: j.energy, reverse=True)
    return RecombinationResult(
        jets=jets,
        rejected=rejected,
        history=history,
        parameters={"R": R, "pt_cut": pt_cut},
    )


def run_sequential_recombination(particles, R, pt_cut) -> List[Jet]:
    """kT clustering returning only the final jets, sorted by energy."""
    return cluster_sequence(particles, R, pt_cut).jets
