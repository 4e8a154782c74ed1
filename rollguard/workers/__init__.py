"""
Background workers.
"""

from .cluster_worker import ClusterSweepWorker

__all__ = ["ClusterSweepWorker"]
