import os

from .loader import section


class Search:
    def __init__(self, config: dict | None = None) -> None:
        search_cfg = section(config, "search")
        self.CACHE_TTL: float = float(search_cfg.get("cache_ttl", os.getenv("SEARCH_CACHE_TTL", "300")))
        self.DEFAULT_K: int = int(search_cfg.get("default_k", os.getenv("SEARCH_DEFAULT_K", "10")))
        self.VECTOR_THRESHOLD: float = float(
            search_cfg.get("vector_threshold", os.getenv("SEARCH_VECTOR_THRESHOLD", "0.7"))
        )
        self.HYBRID_THRESHOLD: float = float(
            search_cfg.get("hybrid_threshold", os.getenv("SEARCH_HYBRID_THRESHOLD", "0.5"))
        )
        self.MIN_CHUNK_SIMILARITY: float = float(
            search_cfg.get("min_chunk_similarity", os.getenv("SEARCH_MIN_CHUNK_SIMILARITY", "0.8"))
        )
        self.VECTOR_WEIGHT: float = float(search_cfg.get("vector_weight", os.getenv("HYBRID_VECTOR_WEIGHT", "0.7")))
        self.TEXT_WEIGHT: float = float(search_cfg.get("text_weight", os.getenv("HYBRID_TEXT_WEIGHT", "0.3")))
