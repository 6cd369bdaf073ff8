"""Application settings loaded from environment variables via pydantic-settings.

Values come from (highest priority first) environment variables, then the
``.env`` file in the working directory, then the defaults below.  Field
``redis_url`` maps to ``REDIS_URL``, ``rag_ingest_mode`` to
``RAG_INGEST_MODE`` and so on.

The same ``Settings`` object configures the API server, the ingestion
worker process and the CLI.
"""

from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """ragcore settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === App ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    # === Persistence ===
    database_path: str = "data/ragcore.db"

    # === Embeddings ===
    # "openai" talks to api.openai.com (or any base_url) through the openai SDK;
    # "forge" posts to {forge_api_url}/embeddings with a bearer key.
    embedding_provider: Literal["openai", "forge"] = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_base_url: str = ""  # OpenAI-compatible base URL override
    openai_api_key: str = ""
    forge_api_url: str = ""
    forge_api_key: str = ""
    embedding_batch_size: int = 64
    embedding_max_attempts: int = 3  # 1 call + 2 retries
    embedding_retry_base_delay: float = 1.0  # seconds, doubles per attempt
    embedding_call_timeout: float = 20.0
    embedding_max_concurrency: int = 4

    # === Chunking ===
    chunk_size: int = 1000
    chunk_overlap: int = 200

    # === Ingestion ===
    rag_ingest_mode: Literal["inline", "queue"] = "inline"
    inline_timeout_seconds: float = 30.0
    max_files_per_collection: int = 20
    auto_agent_kb: bool = True
    upload_max_mb: int = 20

    # === Content storage ===
    storage_mode: Literal["local", "forge"] = "local"
    upload_dir: str = "data/uploads"
    storage_timeout_seconds: float = 20.0

    # === Job queue ===
    redis_url: str = "redis://localhost:6379"
    queue_name: str = "rag-ingest"
    job_attempts: int = 5
    job_backoff_ms: int = 2000
    worker_concurrency: int = 5
    job_timeout_seconds: float = 300.0
    worker_poll_timeout_seconds: float = 1.0
    completed_job_retention: int = 1000
    failed_job_retention_seconds: int = 86400
    # A reserved job whose lease runs out is handed to another worker.
    job_lease_seconds: float = 600.0
    redis_connect_timeout_seconds: float = 5.0
    redis_operation_timeout_seconds: float = 5.0

    # === Retrieval / health ===
    rag_top_k: int = 5
    health_timeout_seconds: float = 5.0

    @model_validator(mode="after")
    def _check_consistency(self) -> "Settings":
        # The sliding window never advances when overlap >= size.
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError("chunk_overlap must be >= 0 and smaller than chunk_size")
        if self.job_lease_seconds <= self.job_timeout_seconds:
            raise ValueError("job_lease_seconds must exceed job_timeout_seconds")
        return self

    @property
    def upload_max_bytes(self) -> int:
        return self.upload_max_mb * 1024 * 1024
