import os

from .loader import as_bool, section


class Indexing:
    def __init__(self, config: dict | None = None) -> None:
        idx_cfg = section(config, "indexing")
        self.MAX_CHUNK_SIZE: int = int(idx_cfg.get("max_chunk_size", os.getenv("MAX_CHUNK_SIZE", "1000")))
        self.OVERLAP_SIZE: int = int(idx_cfg.get("overlap_size", os.getenv("OVERLAP_SIZE", "100")))
        self.BATCH_SIZE: int = int(idx_cfg.get("batch_size", os.getenv("INDEX_BATCH_SIZE", "10")))
        self.BATCH_DELAY: float = float(idx_cfg.get("batch_delay", os.getenv("INDEX_BATCH_DELAY", "1.0")))
        self.REINDEX_BATCH_DELAY: float = float(
            idx_cfg.get("reindex_batch_delay", os.getenv("REINDEX_BATCH_DELAY", "2.0"))
        )
        self.ENABLE_CLUSTERING: bool = as_bool(
            idx_cfg.get("enable_clustering", os.getenv("ENABLE_CLUSTERING", "1"))
        )
        self.ENABLE_COMPRESSION: bool = as_bool(
            idx_cfg.get("enable_compression", os.getenv("ENABLE_COMPRESSION", "0"))
        )
