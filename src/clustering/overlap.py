"""
Split/merge resolution of overlapping cone proto-jets.

Proto-jets closer than 2R may have been built from the same particles.
Pairs whose shared energy fraction exceeds ``merge_fraction`` are merged
into one jet; otherwise only the more energetic jet of the pair is kept.
The scan is greedy and order-sensitive, so proto-jets should be passed in
the order the cone search produced them (descending seed energy).
"""

import logging
import math

from src.clustering.angular import angular_distance
from src.clustering.errors import EmptyClusterError, InvalidParameterError
from src.clustering.model import Jet, unique_constituents, validate_radius


logger = logging.getLogger(__name__)

DEFAULT_MERGE_FRACTION = 0.5


def shared_energy(jet_a, jet_b):
    """Energy of the particles present in both jets, matched by source_id."""
    common = jet_a.source_ids & jet_b.source_ids
    return math.fsum(p.energy for p in jet_a.constituents if p.source_id in common)


def merge_jets(jet_a, jet_b):
    """
    Merge two jets into one whose constituents are the union of both
    (each source_id counted once) and whose kinematics are recomputed.
    """
    reference = jet_a.azimuth if jet_a.energy >= jet_b.energy else jet_b.azimuth
    constituents = unique_constituents(jet_a.constituents, jet_b.constituents)
    return Jet.from_constituents(constituents, reference_azimuth=reference)


def resolve_overlaps(proto_jets, R, merge_fraction=DEFAULT_MERGE_FRACTION):
    """
    Resolve overlaps between proto-jets.

    Parameters
    ----------
    proto_jets : list of ProtoJet or Jet
        Candidates in resolution order. Jets are accepted too, so the
        function can be re-run on its own output.
    R : float
        Cone radius used for clustering. Pairs at Delta R >= 2R never
        interact.
    merge_fraction : float
        A pair is merged when shared_energy / (E_a + E_b) is strictly
        above this value, otherwise the lower-energy jet is dropped.

    Returns
    -------
    list of Jet
        Final jets sorted by descending energy.
    """
    validate_radius(R)
    if not 0.0 <= merge_fraction < 1.0:
        raise InvalidParameterError(
            f"merge_fraction must be in [0, 1), got {merge_fraction}"
        )

    proto_jets = list(proto_jets)
    consumed = [False] * len(proto_jets)
    final_jets = []

    for i, jet_a in enumerate(proto_jets):
        if consumed[i]:
            continue

        survives = True
        for j in range(i + 1, len(proto_jets)):
            if consumed[j]:
                continue

            jet_b = proto_jets[j]
            distance = angular_distance(
                jet_a.rapidity, jet_a.azimuth, jet_b.rapidity, jet_b.azimuth
            )
            if distance >= 2.0 * R:
                continue

            pair_energy = jet_a.energy + jet_b.energy
            if pair_energy <= 0.0:
                raise EmptyClusterError(
                    f"Proto-jets {i} and {j} have no energy to share"
                )
            fraction = shared_energy(jet_a, jet_b) / pair_energy

            if fraction > merge_fraction:
                logger.debug("Merging proto-jets %d and %d (shared %.3f)", i, j, fraction)
                final_jets.append(merge_jets(jet_a, jet_b))
                consumed[i] = consumed[j] = True
                survives = False
                break

            # split: keep the more energetic jet, A wins ties
            if jet_a.energy >= jet_b.energy:
                logger.debug("Dropping proto-jet %d in favour of %d", j, i)
                consumed[j] = True
            else:
                logger.debug("Dropping proto-jet %d in favour of %d", i, j)
                consumed[i] = True
                survives = False
                break

        if survives:
            consumed[i] = True
            final_jets.append(Jet.from_proto_jet(jet_a))

    return sorted(final_jets, key=lambda jet: jet.energy, reverse=True)
