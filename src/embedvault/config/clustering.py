import os

from .loader import section


class Clustering:
    def __init__(self, config: dict | None = None) -> None:
        cl_cfg = section(config, "clustering")
        self.SIMILARITY_THRESHOLD: float = float(
            cl_cfg.get("similarity_threshold", os.getenv("CLUSTER_SIMILARITY_THRESHOLD", "0.8"))
        )
        self.MAX_CLUSTERS: int = int(cl_cfg.get("max_clusters", os.getenv("MAX_CLUSTERS", "50")))
        self.MIN_DOCUMENTS_PER_CLUSTER: int = int(
            cl_cfg.get("min_documents_per_cluster", os.getenv("MIN_DOCUMENTS_PER_CLUSTER", "5"))
        )
        self.REBALANCE_THRESHOLD: float = float(
            cl_cfg.get("rebalance_threshold", os.getenv("REBALANCE_THRESHOLD", "0.1"))
        )
        self.MAX_ITERATIONS: int = int(cl_cfg.get("max_iterations", os.getenv("KMEANS_MAX_ITERATIONS", "10")))
        self.CONVERGENCE_THRESHOLD: float = float(
            cl_cfg.get("convergence_threshold", os.getenv("KMEANS_CONVERGENCE_THRESHOLD", "0.01"))
        )
        # Seconds between scheduled rebalance passes; 0 disables the scheduler.
        self.REBALANCE_INTERVAL: float = float(
            cl_cfg.get("rebalance_interval", os.getenv("REBALANCE_INTERVAL", "86400"))
        )
        seed = cl_cfg.get("seed", os.getenv("KMEANS_SEED"))
        self.SEED: int | None = int(seed) if seed not in (None, "") else None
