import math

import numpy as np
import pytest

from src.clustering import cone
from src.clustering.errors import InvalidParameterError
from src.clustering.model import Jet, Particle
from src.clustering.overlap import resolve_overlaps


def _scenario_particles():
    return [
        Particle(0.0, 0.0, 20.0, 1),
        Particle(0.1, 0.1, 15.0, 2),
        Particle(3.0, 3.0, 25.0, 3),
    ]


def _random_particles(n=60, seed=7):
    rng = np.random.default_rng(seed)
    return [
        Particle(
            rapidity=float(rng.uniform(-2.0, 2.0)),
            azimuth=float(rng.uniform(-math.pi, math.pi)),
            energy=float(rng.exponential(8.0) + 0.2),
            source_id=i,
        )
        for i in range(n)
    ]


def _check_invariants(jets):
    for jet in jets:
        ids = [p.source_id for p in jet.constituents]
        assert len(ids) == len(set(ids))
        assert math.isclose(jet.energy, sum(p.energy for p in jet.constituents))


def test_scenario_two_proto_jets():
    proto_jets = cone.run_seeded_cone(_scenario_particles(), R=0.8, seed_threshold=10.0)

    assert len(proto_jets) == 2
    by_ids = {p.source_ids: p for p in proto_jets}

    pair = by_ids[frozenset({1, 2})]
    assert math.isclose(pair.energy, 35.0)
    assert pair.rapidity == pytest.approx(0.043, abs=1e-3)
    assert pair.azimuth == pytest.approx(0.043, abs=1e-3)
    assert pair.converged

    single = by_ids[frozenset({3})]
    assert math.isclose(single.energy, 25.0)
    assert single.seed_energy == 25.0
    assert single.iterations == 1

    # Far apart: overlap resolution keeps both unchanged
    jets = resolve_overlaps(proto_jets, R=0.8)
    assert [j.energy for j in jets] == pytest.approx([35.0, 25.0])
    assert jets[0].rapidity == pair.rapidity
    assert jets[0].azimuth == pair.azimuth
    assert jets[1].source_ids == frozenset({3})


def test_proto_jets_follow_seed_order():
    proto_jets = cone.run_seeded_cone(_scenario_particles(), R=0.8, seed_threshold=10.0)
    assert [p.seed_energy for p in proto_jets] == [25.0, 20.0]


def test_iteration_cap_is_not_an_error():
    proto_jets = cone.run_seeded_cone(
        _scenario_particles(), R=0.8, seed_threshold=10.0, max_iterations=1
    )
    pair = [p for p in proto_jets if p.source_ids == frozenset({1, 2})][0]
    assert pair.iterations == 1
    assert not pair.converged


def test_no_seeds_gives_no_proto_jets():
    assert cone.run_seeded_cone(_scenario_particles(), R=0.8, seed_threshold=100.0) == []
    assert cone.run_seeded_cone([], R=0.8, seed_threshold=1.0) == []


def test_equal_energy_seeds_keep_input_order():
    particles = [
        Particle(0.0, 0.0, 10.0, "first"),
        Particle(3.0, 0.0, 10.0, "second"),
    ]
    proto_jets = cone.run_seeded_cone(particles, R=0.5, seed_threshold=5.0)
    assert [p.constituents[0].source_id for p in proto_jets] == ["first", "second"]


def test_cone_across_branch_cut():
    particles = [
        Particle(0.0, 3.1, 20.0, 1),
        Particle(0.0, -3.1, 15.0, 2),
    ]
    proto_jets = cone.run_seeded_cone(particles, R=0.5, seed_threshold=10.0)

    assert len(proto_jets) == 1
    assert proto_jets[0].source_ids == frozenset({1, 2})
    assert abs(abs(proto_jets[0].azimuth) - math.pi) < 0.01


def test_seeds_converging_to_same_cone_end_as_one_jet():
    particles = [
        Particle(0.0, 0.0, 20.0, 1),
        Particle(0.2, 0.0, 18.0, 2),
    ]
    jets = cone.find_cone_jets(particles, R=1.0, seed_threshold=10.0)
    assert len(jets) == 1
    assert math.isclose(jets[0].energy, 38.0)


def test_invariants_on_random_event():
    particles = _random_particles()
    proto_jets = cone.run_seeded_cone(particles, R=0.7, seed_threshold=5.0)
    assert proto_jets
    _check_invariants(proto_jets)

    seed_energies = [p.seed_energy for p in proto_jets]
    assert seed_energies == sorted(seed_energies, reverse=True)

    jets = cone.find_cone_jets(particles, R=0.7, seed_threshold=5.0)
    _check_invariants(jets)
    energies = [j.energy for j in jets]
    assert energies == sorted(energies, reverse=True)


def test_find_cone_jets_without_overlap_resolution():
    particles = _random_particles()
    proto_jets = cone.run_seeded_cone(particles, R=0.7, seed_threshold=5.0)
    jets = cone.find_cone_jets(particles, R=0.7, seed_threshold=5.0, resolve_overlaps=False)

    assert all(isinstance(j, Jet) for j in jets)
    assert len(jets) == len(proto_jets)
    assert [j.energy for j in jets] == sorted((p.energy for p in proto_jets), reverse=True)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"R": 0.0, "seed_threshold": 1.0},
        {"R": -0.4, "seed_threshold": 1.0},
        {"R": 0.4, "seed_threshold": -1.0},
        {"R": 0.4, "seed_threshold": 1.0, "max_iterations": 0},
        {"R": 0.4, "seed_threshold": 1.0, "max_iterations": 2.5},
        {"R": 0.4, "seed_threshold": 1.0, "max_iterations": float("nan")},
        {"R": 0.4, "seed_threshold": 1.0, "max_iterations": float("inf")},
        {"R": 0.4, "seed_threshold": 1.0, "convergence_tolerance": 0.0},
    ],
)
def test_invalid_parameters_fail_fast(kwargs):
    with pytest.raises(InvalidParameterError):
        cone.run_seeded_cone(_scenario_particles(), **kwargs)


def test_non_positive_energy_is_rejected():
    particles = _scenario_particles() + [Particle(1.0, 1.0, -2.0, 4)]
    with pytest.raises(InvalidParameterError):
        cone.run_seeded_cone(particles, R=0.8, seed_threshold=10.0)
