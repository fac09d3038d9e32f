import os

from .loader import section


class Embeddings:
    def __init__(self, config: dict | None = None) -> None:
        emb_cfg = section(config, "embeddings")
        self.EMB_MODEL_ID: str = str(emb_cfg.get("model_id", os.getenv("EMB_MODEL_ID", "text-embedding-3-small")))
        self.EMB_DIM: int = int(emb_cfg.get("dim", os.getenv("EMB_DIM", "1536")))
        self.EMB_BATCH_SIZE: int = int(emb_cfg.get("batch_size", os.getenv("EMB_BATCH_SIZE", "100")))
        self.EMB_BATCH_DELAY: float = float(emb_cfg.get("batch_delay", os.getenv("EMB_BATCH_DELAY", "1.0")))
