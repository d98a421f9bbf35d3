"""
Particle sources for the jet clustering.

Particles come either from a 2D rapidity x azimuth energy grid (stored
as a .npy array) or from per-event particle branches of a ROOT file
read with uproot.
"""

import math

import numpy as np
import uproot
import awkward as ak

from src.clustering.angular import normalize_azimuth
from src.clustering.errors import InvalidParameterError
from src.clustering.model import Particle


DEFAULT_BRANCHES = [
    "part_y",
    "part_phi",
    "part_E",
]

DEFAULT_RAPIDITY_RANGE = (-4.0, 4.0)
DEFAULT_AZIMUTH_RANGE = (-math.pi, math.pi)

# cells at or below this energy are treated as noise
DEFAULT_ENERGY_FLOOR = 0.1


def grid_to_physics(row, column, grid_shape,
                    rapidity_range=DEFAULT_RAPIDITY_RANGE,
                    azimuth_range=DEFAULT_AZIMUTH_RANGE):
    """
    Map a grid cell to its (rapidity, azimuth) position.

    Rows run along rapidity and columns along azimuth. The lower edge of
    the cell is used, and the azimuth is normalized into (-pi, pi].

    Returns
    -------
    tuple of float
        ``(rapidity, azimuth)``.
    """
    n_rows, n_columns = grid_shape
    rapidity = rapidity_range[0] + (row / n_rows) * (rapidity_range[1] - rapidity_range[0])
    azimuth = azimuth_range[0] + (column / n_columns) * (azimuth_range[1] - azimuth_range[0])
    return rapidity, normalize_azimuth(azimuth)


def particles_from_grid(grid, energy_min=DEFAULT_ENERGY_FLOOR,
                        rapidity_range=DEFAULT_RAPIDITY_RANGE,
                        azimuth_range=DEFAULT_AZIMUTH_RANGE):
    """
    Convert a 2D energy grid into a particle list.

    Every cell with energy above ``energy_min`` becomes one particle whose
    source_id is its ``(row, column)`` index.
    """
    grid = np.asarray(grid, dtype=float)
    if grid.ndim != 2:
        raise InvalidParameterError(f"Energy grid must be 2D, got shape {grid.shape}")

    particles = []
    for row, column in zip(*np.nonzero(grid > energy_min)):
        rapidity, azimuth = grid_to_physics(
            row, column, grid.shape, rapidity_range, azimuth_range
        )
        particles.append(
            Particle(
                rapidity=rapidity,
                azimuth=azimuth,
                energy=float(grid[row, column]),
                source_id=(int(row), int(column)),
            )
        )
    return particles


def load_grid(filename):
    """Load a 2D energy grid saved with numpy.save."""
    grid = np.load(filename)
    if grid.ndim != 2:
        raise InvalidParameterError(
            f"{filename} does not hold a 2D grid (shape {grid.shape})"
        )
    return grid


def _find_tree(file):
    """
    Detect the particle TTree inside the ROOT file.

    Logic:
    1. If 'particles' exists, use it.
    2. Otherwise, search for exactly one TTree.
    3. Otherwise, search for a TTree inside subdirectories.
    """
    for name in ("particles", "particles;1"):
        if name in file.keys():
            return file[name]

    tt_keys = [k for k, v in file.classnames().items() if v == "TTree"]
    if len(tt_keys) == 1:
        return file[tt_keys[0]]

    for key in file.keys():
        obj = file[key]
        if not hasattr(obj, "keys"):
            continue
        for subkey in obj.keys():
            full = f"{key}/{subkey}"
            if file[full].classname == "TTree":
                return file[full]

    raise RuntimeError(f"No TTree found in file {file.file_path}")


def load_events(filename, branches=None):
    """
    Load per-event particle branches into an Awkward Array.
    Automatically detects the tree name.
    """
    if branches is None:
        branches = DEFAULT_BRANCHES

    with uproot.open(filename) as f:
        tree = _find_tree(f)
        arrays = tree.arrays(branches, library="ak")

    return arrays


def particles_from_event(event, branches=None):
    """
    Turn one event record (or a dict of per-particle lists) into particles.

    The source_id is the particle's position in the event. Entries with
    non-positive energy are skipped.
    """
    y_branch, phi_branch, e_branch = branches or DEFAULT_BRANCHES

    rapidities = ak.to_list(event[y_branch])
    azimuths = ak.to_list(event[phi_branch])
    energies = ak.to_list(event[e_branch])

    particles = []
    for i, (y, phi, energy) in enumerate(zip(rapidities, azimuths, energies)):
        if energy <= 0.0:
            continue
        particles.append(Particle(float(y), normalize_azimuth(phi), float(energy), i))
    return particles
