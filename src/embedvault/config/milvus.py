import os

from .loader import as_bool, section


class Milvus:
    def __init__(self, config: dict | None = None) -> None:
        milvus_cfg = section(config, "milvus")
        self.MILVUS_HOST: str = str(milvus_cfg.get("host", os.getenv("MILVUS_HOST", "127.0.0.1")))
        self.MILVUS_PORT: str = str(milvus_cfg.get("port", os.getenv("MILVUS_PORT", "19530")))
        self.MILVUS_COLLECTION: str = str(milvus_cfg.get("collection", os.getenv("MILVUS_COLLECTION", "embedvault")))
        self.MILVUS_NLIST: int = int(milvus_cfg.get("nlist", os.getenv("MILVUS_NLIST", "1024")))
        self.MILVUS_NPROBE: int = int(milvus_cfg.get("nprobe", os.getenv("MILVUS_NPROBE", "32")))
        self.MILVUS_DELETE_CHUNK: int = int(milvus_cfg.get("delete_chunk", os.getenv("MILVUS_DELETE_CHUNK", "800")))
        # Off by default: the SQLite store falls back to brute-force cosine search.
        self.ENABLE_MILVUS: bool = as_bool(milvus_cfg.get("enable_milvus", os.getenv("ENABLE_MILVUS", "0")))
