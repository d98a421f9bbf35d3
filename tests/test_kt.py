import math

import numpy as np
import pytest

from src.clustering import kt
from src.clustering.errors import DegenerateMinimumError, InvalidParameterError
from src.clustering.model import Particle


def _random_particles(n=40, seed=11):
    rng = np.random.default_rng(seed)
    return [
        Particle(float(rng.uniform(-2, 2)), float(rng.uniform(-math.pi, math.pi)),
                 float(rng.exponential(5.0) + 0.2), i)
        for i in range(n)
    ]


def test_single_particle_below_cut_gives_no_jets():
    result = kt.cluster_sequence([Particle(0.0, 0.0, 5.0, 1)], R=0.8, pt_cut=10.0)

    assert result.jets == []
    assert len(result.rejected) == 1
    assert [s.kind for s in result.history] == [kt.BEAM]
    assert not result.history[0].accepted


def test_single_particle_above_cut_is_a_jet():
    jets = kt.run_sequential_recombination([Particle(0.5, 1.0, 12.0, 1)], R=0.8, pt_cut=10.0)

    assert len(jets) == 1
    assert jets[0].energy == 12.0
    assert jets[0].pt == 12.0
    assert (jets[0].rapidity, jets[0].azimuth) == (0.5, 1.0)


def test_close_pair_is_recombined():
    particles = [Particle(0.0, 0.0, 20.0, 1), Particle(0.1, 0.0, 15.0, 2)]
    result = kt.cluster_sequence(particles, R=0.8, pt_cut=10.0)

    # d_12 = 15^2 * (0.1 / 0.8)^2 is far below both beam distances
    assert result.history[0].kind == kt.MERGE
    assert result.history[0].distance == pytest.approx(225.0 * (0.1 / 0.8) ** 2)
    assert result.n_jets == 1
    jet = result.jets[0]
    assert jet.source_ids == frozenset({1, 2})
    assert math.isclose(jet.energy, 35.0)
    assert math.isclose(jet.pt, 35.0)
    assert math.isclose(jet.rapidity, 1.5 / 35.0)


def test_distant_particles_become_separate_jets():
    particles = [Particle(0.0, 0.0, 20.0, 1), Particle(3.0, 0.0, 15.0, 2)]

    jets = kt.run_sequential_recombination(particles, R=0.8, pt_cut=10.0)
    assert [j.energy for j in jets] == [20.0, 15.0]

    jets = kt.run_sequential_recombination(particles, R=0.8, pt_cut=16.0)
    assert [j.energy for j in jets] == [20.0]


def test_first_minimum_wins_ties():
    particles = [Particle(0.0, 0.0, 10.0, "a"), Particle(3.0, 0.0, 10.0, "b")]
    result = kt.cluster_sequence(particles, R=0.5, pt_cut=0.0)
    assert result.history[0].parents == (0,)
    assert result.history[1].parents == (1,)


def test_recombination_across_branch_cut():
    particles = [Particle(0.0, 3.1, 10.0, 1), Particle(0.0, -3.1, 10.0, 2)]
    jets = kt.run_sequential_recombination(particles, R=0.8, pt_cut=0.0)
    assert len(jets) == 1
    assert abs(abs(jets[0].azimuth) - math.pi) < 1e-6


def test_energy_is_conserved_and_particles_partitioned():
    particles = _random_particles()
    result = kt.cluster_sequence(particles, R=0.6, pt_cut=8.0)

    total_in = sum(p.energy for p in particles)
    total_out = sum(j.energy for j in result.jets) + sum(p.energy for p in result.rejected)
    assert math.isclose(total_in, total_out)

    ids = [c.source_id for j in result.jets for c in j.constituents]
    ids += [c.source_id for p in result.rejected for c in p.constituents]
    assert sorted(ids) == list(range(len(particles)))

    # one step per input particle
    assert len(result.history) == len(particles)

    for jet in result.jets:
        assert jet.pt >= 8.0
        assert math.isclose(jet.energy, sum(c.energy for c in jet.constituents))

    energies = [j.energy for j in result.jets]
    assert energies == sorted(energies, reverse=True)


def test_empty_input_gives_no_jets():
    assert kt.run_sequential_recombination([], R=0.4, pt_cut=1.0) == []


def test_degenerate_minimum_is_raised(monkeypatch):
    monkeypatch.setattr(kt, "beam_distance", lambda p: float("nan"))
    monkeypatch.setattr(kt, "pair_distance", lambda p1, p2, R: float("nan"))

    with pytest.raises(DegenerateMinimumError):
        kt.run_sequential_recombination([Particle(0.0, 0.0, 1.0, 1)], R=0.4, pt_cut=0.0)


def test_invalid_parameters():
    particles = [Particle(0.0, 0.0, 1.0, 1)]
    with pytest.raises(InvalidParameterError):
        kt.run_sequential_recombination(particles, R=-1.0, pt_cut=0.0)
    with pytest.raises(InvalidParameterError):
        kt.run_sequential_recombination(particles, R=0.4, pt_cut=-1.0)
    with pytest.raises(InvalidParameterError):
        kt.run_sequential_recombination([Particle(0.0, 0.0, 0.0, 1)], R=0.4, pt_cut=0.0)
