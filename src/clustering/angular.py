"""
Angular utilities shared by the cone and kT clustering algorithms.

This module provides azimuth normalization, the (rapidity, azimuth)
angular distance and an energy-weighted centroid that is safe across
the azimuthal branch cut at +-pi.
"""

import math

import numpy as np

from src.clustering.errors import EmptyClusterError, InvalidParameterError


TWO_PI = 2.0 * math.pi


def normalize_azimuth(phi):
    """
    Wrap an azimuthal angle into (-pi, pi].

    Parameters
    ----------
    phi : float
        Azimuthal angle [radians], any finite value.

    Returns
    -------
    float
        The equivalent angle in (-pi, pi]. Values already inside the
        interval are returned unchanged, so the function is idempotent.
    """
    phi = float(phi)
    if not math.isfinite(phi):
        raise InvalidParameterError(f"Azimuth must be finite, got {phi}")

    if -math.pi < phi <= math.pi:
        return phi

    # fmod keeps the sign of phi, so one shift is enough afterwards
    phi = math.fmod(phi, TWO_PI)
    if phi > math.pi:
        phi -= TWO_PI
    elif phi <= -math.pi:
        phi += TWO_PI
    return phi


def delta_phi(phi1, phi2):
    """Signed azimuthal difference phi1 - phi2, wrapped into (-pi, pi]."""
    return normalize_azimuth(phi1 - phi2)


def angular_distance(y1, phi1, y2, phi2):
    """
    Compute Delta R = sqrt(dy^2 + dphi^2) between two points.

    The azimuthal difference is normalized first, so points on either
    side of the branch cut (e.g. phi = pi and phi = -pi) are close.
    """
    dy = y1 - y2
    dphi = delta_phi(phi1, phi2)
    return math.sqrt(dy * dy + dphi * dphi)


def angular_distances(ys, phis, y, phi):
    """
    Vectorized Delta R from many points to a single axis.

    Parameters
    ----------
    ys, phis : numpy.ndarray
        Rapidities and azimuths of the points.
    y, phi : float
        Position of the axis.

    Returns
    -------
    numpy.ndarray
        Distances with the same shape as ``ys``.
    """
    dy = np.asarray(ys, dtype=float) - y
    # pi - mod(pi - x, 2pi) lands in (-pi, pi]; only dphi^2 is used
    dphi = math.pi - np.mod(math.pi - (np.asarray(phis, dtype=float) - phi), TWO_PI)
    return np.sqrt(dy**2 + dphi**2)


def energy_weighted_centroid(particles, reference_azimuth=None):
    """
    Energy-weighted centroid of a set of particles.

    Azimuths are unwrapped into the local frame of ``reference_azimuth``
    before averaging and the result is shifted back and re-normalized.
    A plain weighted mean of raw azimuths would put the centroid of two
    particles at +-(pi - small) near phi = 0 instead of near pi.

    Parameters
    ----------
    particles : iterable of Particle
        Anything exposing ``rapidity``, ``azimuth`` and ``energy``.
    reference_azimuth : float, optional
        Frame centre for the unwrapping. Defaults to the azimuth of the
        most energetic particle.

    Returns
    -------
    tuple of float
        ``(rapidity, azimuth, energy)``.
    """
    particles = list(particles)
    if not particles:
        raise EmptyClusterError("Cannot compute the centroid of an empty set")

    energies = np.array([p.energy for p in particles], dtype=float)
    total_energy = float(np.sum(energies))
    if total_energy <= 0.0:
        raise EmptyClusterError(
            f"Cannot compute the centroid of a set with total energy {total_energy}"
        )

    if reference_azimuth is None:
        reference_azimuth = particles[int(np.argmax(energies))].azimuth

    rapidities = np.array([p.rapidity for p in particles], dtype=float)
    offsets = np.array(
        [delta_phi(p.azimuth, reference_azimuth) for p in particles], dtype=float
    )

    rapidity = float(np.sum(energies * rapidities) / total_energy)
    azimuth = normalize_azimuth(
        reference_azimuth + float(np.sum(energies * offsets) / total_energy)
    )
    return rapidity, azimuth, total_energy
