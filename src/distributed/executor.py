"""
Dask-based execution helpers

This module hides the details of starting a local Dask cluster and
building one clustering task per parameter point. Every
task receives its own particle list, so tasks share no mutable state.
"""

from dask.distributed import Client, LocalCluster
from dask import delayed


def create_local_client(n_workers=4, threads_per_worker=1):
    """
    Create a local Dask client with a LocalCluster.

    Parameters
    ----------
    n_workers : int
        Number of workers to start.
    threads_per_worker : int
        Number of threads per worker.

    Returns
    -------
    dask.distributed.Client
        Connected Dask client.
    """
    cluster = LocalCluster(
        n_workers=n_workers,
        threads_per_worker=threads_per_worker,
        processes=False,
    )
    client = Client(cluster)
    return client


def map_parameter_sweep(client, particles, parameter_sets, cluster_function):
    """
    One delayed clustering run per parameter set.

    ``cluster_function`` is called as cluster_function(particles, **params)
    with a private copy of the particle list for every run.
    """
    return [
        delayed(cluster_function)(list(particles), **params)
        for params in parameter_sets
    ]


def compute_tasks(client, tasks):
    """Compute delayed tasks on the client and gather the results in order."""
    futures = client.compute(tasks)
    return client.gather(futures)
