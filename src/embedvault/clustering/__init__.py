"""Similarity clustering of stored documents."""

from .kmeans import calculate_optimal_k, kmeans_plus_plus, perform_kmeans
from .manager import ClusterDocument, ClusteringConfig, ClusterManager, SimilarCluster, cluster_name

__all__ = [
    "ClusterManager",
    "ClusteringConfig",
    "ClusterDocument",
    "SimilarCluster",
    "cluster_name",
    "perform_kmeans",
    "kmeans_plus_plus",
    "calculate_optimal_k",
]
