"""
Main entry point for the jet clustering analysis.

Reads energy grids (.npy) or per-event particle ntuples (.root), runs
either the seeded-cone or the kT jet algorithm on every event, and fills
histograms of jet observables (energy, multiplicity, rapidity).

Supports both serial execution and local multi-process parallelism
via ProcessPoolExecutor, plus an optional Dask parameter sweep over the
clustering radius.
"""

import argparse
import glob
import os
import time
import multiprocessing
from concurrent.futures import ProcessPoolExecutor, as_completed

import yaml
import numpy as np
import matplotlib.pyplot as plt
from matplotlib.patches import Circle
from hist import Hist
import hist

from src.clustering.cone import find_cone_jets
from src.clustering.errors import InvalidParameterError
from src.clustering.io import (
    DEFAULT_AZIMUTH_RANGE,
    DEFAULT_ENERGY_FLOOR,
    DEFAULT_RAPIDITY_RANGE,
    load_events,
    load_grid,
    particles_from_event,
    particles_from_grid,
)
from src.clustering.kt import run_sequential_recombination
from src.clustering.selection import basic_particle_selection, jet_selection


# Argument parsing and config loading
def parse_args():
    parser = argparse.ArgumentParser(
        description="Seeded-cone / kT jet clustering over energy grids or particle ntuples."
    )
    parser.add_argument(
        "--config",
        default="config/config.yaml",
        help="Path to YAML configuration file.",
    )
    parser.add_argument(
        "--n-workers",
        type=int,
        default=None,
        help="Number of worker processes for parallel file processing "
        "(overrides n_workers from the config).",
    )
    return parser.parse_args()


def resolve_n_workers(cli_n_workers, config, max_procs=None):
    """
    Number of worker processes to use.

    The --n-workers flag wins when given, then the config's n_workers,
    then 1. The result is capped at the CPU count.
    """
    if cli_n_workers is not None:
        n_workers = cli_n_workers
    else:
        n_workers = config.get("n_workers", 1)
    if n_workers < 1:
        raise ValueError(f"n_workers must be at least 1, got {n_workers}")

    if max_procs is None:
        max_procs = multiprocessing.cpu_count() or 1
    if n_workers > max_procs:
        print(
            f"[INFO] Requested {n_workers} workers but only {max_procs} cores available; "
            f"using {max_procs}."
        )
        n_workers = max_procs
    return n_workers


def load_config(path):
    with open(path) as f:
        return yaml.safe_load(f)


# Clustering of a single event
def cluster_event(
    particles,
    name="cone",
    R=0.8,
    seed_threshold=10.0,
    max_iterations=100,
    convergence_tolerance=0.01,
    resolve_overlaps=True,
    merge_fraction=0.5,
    pt_cut=10.0,
):
    """
    Run the configured jet algorithm on one particle list.

    The keyword arguments mirror the ``algorithm`` section of the config,
    so ``cluster_event(particles, **config["algorithm"])`` works.
    """
    if name == "cone":
        return find_cone_jets(
            particles,
            R,
            seed_threshold,
            max_iterations=max_iterations,
            convergence_tolerance=convergence_tolerance,
            resolve_overlaps=resolve_overlaps,
            merge_fraction=merge_fraction,
        )
    if name == "kt":
        return run_sequential_recombination(particles, R, pt_cut)
    raise InvalidParameterError(f"Unknown jet algorithm '{name}' (expected 'cone' or 'kt')")


def load_particle_events(filename, config):
    """
    Read one input file into a list of per-event particle lists.

    A .npy file holds a single energy grid (one event); a .root file
    holds one event per entry.
    """
    grid_cfg = config.get("grid", {})
    energy_min = grid_cfg.get("energy_min", DEFAULT_ENERGY_FLOOR)

    if filename.endswith(".npy"):
        grid = load_grid(filename)
        particles = particles_from_grid(
            grid,
            energy_min=energy_min,
            rapidity_range=tuple(grid_cfg.get("rapidity_range", DEFAULT_RAPIDITY_RANGE)),
            azimuth_range=tuple(grid_cfg.get("azimuth_range", DEFAULT_AZIMUTH_RANGE)),
        )
        return [particles]

    arrays = load_events(filename)
    return [
        basic_particle_selection(particles_from_event(event), energy_min)
        for event in arrays
    ]


# Per-file analysis
def process_file(filename, config):
    """
    Per-file jet clustering.

    Steps:
      1. Load the events (grid or ntuple) as particle lists.
      2. Cluster every event with the configured algorithm.
      3. Apply jet-level energy and |y| cuts.
      4. Fill the jet energy histogram and collect per-jet observables.
    """
    algorithm_cfg = config.get("algorithm", {})
    selection_cfg = config.get("selection", {})

    # 1) Load events
    events = load_particle_events(filename, config)

    nbins = config["hist"]["nbins"]
    hmin = config["hist"]["min"]
    hmax = config["hist"]["max"]

    energy_axis = hist.axis.Regular(
        nbins, hmin, hmax, name="energy", label=r"Jet energy [GeV]"
    )
    h_energy = Hist(energy_axis)

    multiplicity = []
    jet_energy = []
    jet_rapidity = []
    display = None

    for particles in events:
        # 2) Cluster
        jets = cluster_event(particles, **algorithm_cfg)

        # 3) Jet selection
        jets = jet_selection(
            jets,
            energy_min=selection_cfg.get("jet_energy_min", 0.0),
            rapidity_max=selection_cfg.get("jet_rapidity_max"),
        )

        multiplicity.append(len(jets))
        jet_energy.extend(jet.energy for jet in jets)
        jet_rapidity.extend(jet.rapidity for jet in jets)

        # keep the first event of the file for the event display
        if display is None:
            display = {"particles": particles, "jets": jets}

    jet_energy = np.array(jet_energy, dtype=float)
    if jet_energy.size > 0:
        h_energy.fill(jet_energy)

    info = {
        "filename": filename,
        "n_events": len(events),
        "R": algorithm_cfg.get("R", 0.8),
        "multiplicity": np.array(multiplicity, dtype=int),
        "jet_energy": jet_energy,
        "jet_rapidity": np.array(jet_rapidity, dtype=float),
        "display": display,
    }
    return h_energy, info


def safe_process_file(fname, config):
    """
    Wrapper so that a bad file doesn't kill the whole job.
    """
    try:
        return process_file(fname, config)
    except Exception as e:
        print(f"[WARN] Error in file {fname}: {e}")
        return None


def run_radius_sweep(particles, config):
    """
    Cluster one event at several radii on a local Dask cluster.

    Returns a list of (R, n_jets) pairs.
    """
    from src.distributed.executor import (
        compute_tasks,
        create_local_client,
        map_parameter_sweep,
    )

    sweep_cfg = config.get("sweep", {})
    radii = sweep_cfg.get("radii", [])
    base = dict(config.get("algorithm", {}))
    parameter_sets = [{**base, "R": r} for r in radii]

    client = create_local_client(n_workers=sweep_cfg.get("n_workers", 2))
    try:
        tasks = map_parameter_sweep(client, particles, parameter_sets, cluster_event)
        results = compute_tasks(client, tasks)
    finally:
        client.close()

    return [(r, len(jets)) for r, jets in zip(radii, results)]


def plot_event_display(particles, jets, R, path):
    """Particles in (azimuth, rapidity) with each jet drawn as a cone of radius R."""
    fig, ax = plt.subplots()
    if particles:
        sc = ax.scatter(
            [p.azimuth for p in particles],
            [p.rapidity for p in particles],
            c=[p.energy for p in particles],
            s=12,
            cmap="viridis",
        )
        fig.colorbar(sc, ax=ax, label="Energy [GeV]")

    for idx, jet in enumerate(jets):
        color = "gold" if idx == 0 else "darkorange"
        ax.add_patch(
            Circle((jet.azimuth, jet.rapidity), R, fill=False, linestyle="--", color=color)
        )
        ax.plot(jet.azimuth, jet.rapidity, marker="+", markersize=10, color=color)
        ax.annotate(f"J{idx + 1}", (jet.azimuth, jet.rapidity + R), ha="center", color=color)

    ax.set_xlim(-np.pi, np.pi)
    ax.set_aspect("equal", adjustable="datalim")
    ax.set_xlabel(r"Azimuth $\phi$")
    ax.set_ylabel(r"Rapidity $y$")
    ax.set_title(f"Event display (R = {R})")
    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)


def main():
    args = parse_args()
    config = load_config(args.config)

    pattern = os.path.join(config["data_dir"], config["file_pattern"])
    files = sorted(glob.glob(pattern))

    if not files:
        raise RuntimeError(f"No input files found for pattern {pattern}")

    print(f"Found {len(files)} input files.")

    analysis_cfg = config.get("analysis", {})
    make_plots = analysis_cfg.get("make_plots", True)
    algorithm_cfg = config.get("algorithm", {})

    n_workers = resolve_n_workers(args.n_workers, config)

    print(f"Using {n_workers} worker process(es).")
    print(f"Algorithm: {algorithm_cfg.get('name', 'cone')}, R = {algorithm_cfg.get('R', 0.8)}")

    start_time = time.perf_counter()

    results = []
    total_events = 0

    # Serial path for N=1: avoids multiprocessing overhead
    if n_workers == 1:
        for i, fname in enumerate(files, start=1):
            out = safe_process_file(fname, config)
            if out is not None:
                h, info = out
                results.append((h, info))
                total_events += info.get("n_events", 0)
            print(f"[{i}/{len(files)}] Completed {fname}")
    else:
        with ProcessPoolExecutor(max_workers=n_workers) as pool:
            future_to_file = {
                pool.submit(safe_process_file, fname, config): fname
                for fname in files
            }
            for i, future in enumerate(as_completed(future_to_file), start=1):
                fname = future_to_file[future]
                try:
                    out = future.result()
                except Exception as e:
                    print(f"[ERROR] {fname}: {e}")
                    continue
                if out is not None:
                    h, info = out
                    results.append((h, info))
                    total_events += info.get("n_events", 0)
                print(f"[{i}/{len(files)}] Completed {fname}")

    wall_time = time.perf_counter() - start_time

    if not results:
        raise RuntimeError("No successful per-file results; nothing to merge.")

    # as_completed returns files out of order
    results.sort(key=lambda r: r[1]["filename"])
    hists, infos = zip(*results)

    # Merge histograms by adding them bin-by-bin
    total_hist = hists[0].copy()
    for h in hists[1:]:
        total_hist += h

    outdir = config["output_dir"]
    os.makedirs(outdir, exist_ok=True)

    def concat_from_infos(key, dtype=float):
        arrays = [info[key] for info in infos if info[key].size > 0]
        if arrays:
            return np.concatenate(arrays)
        return np.array([], dtype=dtype)

    multiplicity_all = concat_from_infos("multiplicity", dtype=int)
    rapidity_all = concat_from_infos("jet_rapidity")

    counts = total_hist.values()
    edges = total_hist.axes[0].edges
    centers = 0.5 * (edges[:-1] + edges[1:])
    errors = np.sqrt(counts)
    total_jets = int(multiplicity_all.sum()) if multiplicity_all.size > 0 else 0
    mean_multiplicity = multiplicity_all.mean() if multiplicity_all.size > 0 else float("nan")

    np.save(os.path.join(outdir, "jet_energy_counts.npy"), counts)
    np.save(os.path.join(outdir, "jet_energy_edges.npy"), edges)
    np.save(os.path.join(outdir, "jet_multiplicity.npy"), multiplicity_all)

    if make_plots:
        # Jet energy with error bars
        fig, ax = plt.subplots()
        ax.step(edges[:-1], counts, where="post", label="Jets")
        ax.errorbar(
            centers,
            counts,
            yerr=errors,
            fmt=".",
            markersize=2,
            linewidth=0.5,
            label="Statistical errors",
        )
        ax.set_xlabel("Jet energy [GeV]")
        ax.set_ylabel("Jets")
        ax.set_title("Jet energy")
        ax.legend(loc="best", frameon=False)
        fig.tight_layout()
        fig.savefig(os.path.join(outdir, "jet_energy.png"))
        plt.close(fig)

        # Jet multiplicity per event
        if multiplicity_all.size > 0:
            n_bins = np.arange(0, multiplicity_all.max() + 2) - 0.5
            n_counts, n_edges = np.histogram(multiplicity_all, bins=n_bins)

            fig, ax = plt.subplots()
            ax.step(n_edges[:-1], n_counts, where="post", label="Events")
            ax.set_xlabel("Number of jets")
            ax.set_ylabel("Events")
            ax.set_title("Jet multiplicity")
            ax.legend(loc="best", frameon=False)
            fig.tight_layout()
            fig.savefig(os.path.join(outdir, "jet_multiplicity.png"))
            plt.close(fig)

        # Jet rapidity
        if rapidity_all.size > 0:
            y_bins = np.linspace(-4.0, 4.0, 41)
            y_counts, y_edges = np.histogram(rapidity_all, bins=y_bins)

            fig, ax = plt.subplots()
            ax.step(y_edges[:-1], y_counts, where="post", label="Jets")
            ax.set_xlabel(r"Jet rapidity $y$")
            ax.set_ylabel("Jets")
            ax.set_title("Jet rapidity distribution")
            ax.legend(loc="best", frameon=False)
            fig.tight_layout()
            fig.savefig(os.path.join(outdir, "jet_rapidity.png"))
            plt.close(fig)

        # Event display of the first event
        display = infos[0]["display"]
        if display is not None:
            plot_event_display(
                display["particles"],
                display["jets"],
                infos[0]["R"],
                os.path.join(outdir, "event_display.png"),
            )

    sweep_cfg = config.get("sweep", {})
    if sweep_cfg.get("radii") and infos[0]["display"] is not None:
        sweep = run_radius_sweep(infos[0]["display"]["particles"], config)
        for R, n_jets in sweep:
            print(f"[INFO] R = {R}: {n_jets} jets in first event")

    # Final summary
    print(f"Processed {len(results)} files.")
    print(f"Total events: {total_events}")
    print(f"Total jets (after cuts): {total_jets}")
    print(f"Mean jet multiplicity: {mean_multiplicity:.2f}")
    print(f"Total wall time: {wall_time:.2f} s")
    if wall_time > 0:
        rate = total_events / wall_time
        print(f"Average processing rate: {rate:.1f} events/s")
    print(f"Saved outputs to {outdir}")


if __name__ == "__main__":
    main()
