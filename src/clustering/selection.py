"""
Selection logic for jet clustering.

Particle-level energy floor applied before clustering and jet-level
acceptance cuts applied to the clustering output.
"""


def basic_particle_selection(particles, energy_min=0.1):
    """
    Keep particles with energy strictly above the floor.
    """
    return [p for p in particles if p.energy > energy_min]


def jet_selection(jets, energy_min=0.0, rapidity_max=None):
    """
    Jet-level cuts: minimum energy and, optionally, maximum |y|.
    Input order is preserved, so energy-sorted input stays sorted.
    """
    selected = []
    for jet in jets:
        if jet.energy < energy_min:
            continue
        if rapidity_max is not None and abs(jet.rapidity) > rapidity_max:
            continue
        selected.append(jet)
    return selected
