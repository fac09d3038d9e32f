import os

from .loader import section


class LocalLLM:
    def __init__(self, config: dict | None = None) -> None:
        llm_cfg = section(config, "local_llm")
        self.LOCAL_EMB_MODEL_ID: str = str(
            llm_cfg.get("embedding_model_id", os.getenv("LOCAL_EMB_MODEL_ID", "nomic-embed-text"))
        )
        self.LOCAL_SERVER_URL: str = str(
            llm_cfg.get("local_server_url", os.getenv("LOCAL_SERVER_URL", "http://localhost:11434"))
        )
