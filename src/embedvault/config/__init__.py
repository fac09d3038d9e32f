"""Engine configuration"""

import logging
from dotenv import load_dotenv

from .loader import load_raw_config
from .core import Core
from .embeddings import Embeddings
from .indexing import Indexing
from .clustering import Clustering
from .search import Search
from .milvus import Milvus
from .local_llm import LocalLLM

load_dotenv()

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s]: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logging.basicConfig(format=LOG_FORMAT, datefmt=DATE_FORMAT, level=logging.INFO)
logging.getLogger("httpx").setLevel(logging.WARNING)

_RAW_CONFIG = load_raw_config()

core = Core(_RAW_CONFIG)
embeddings = Embeddings(_RAW_CONFIG)
indexing = Indexing(_RAW_CONFIG)
clustering = Clustering(_RAW_CONFIG)
search = Search(_RAW_CONFIG)
milvus = Milvus(_RAW_CONFIG)
local_llm = LocalLLM(_RAW_CONFIG)


class Config:
    core = core
    embeddings = embeddings
    indexing = indexing
    clustering = clustering
    search = search
    milvus = milvus
    local_llm = local_llm


__all__ = ["core", "embeddings", "indexing", "clustering", "search", "milvus", "local_llm", "Config"]
