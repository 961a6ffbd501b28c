"""Config file."""
from urllib.parse import quote_plus

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # PROJECT
    project_name: str = Field("shielded-pool-indexer", alias="PROJECT_NAME")

    # DATABASE
    postgres_user: str = Field("postgres", alias="POSTGRES_USER")
    postgres_password: SecretStr = Field(SecretStr("postgres"), alias="POSTGRES_PASSWORD")
    postgres_server: str = Field("localhost", alias="POSTGRES_SERVER")
    postgres_port: int = Field(5432, alias="POSTGRES_PORT")
    postgres_db: str = Field("shielded_indexer", alias="POSTGRES_DB")
    database_url: str | None = None
    sync_database_url: str | None = None

    # CHAIN
    rpc_url: str = Field("http://localhost:8545", alias="RPC_URL")
    # Extra providers rotated with RPC_URL; a failing one cools down for RPC_PROVIDER_COOLDOWN_S
    rpc_urls: list[str] = Field([], alias="RPC_URLS")
    rpc_provider_cooldown_s: float = Field(30.0, alias="RPC_PROVIDER_COOLDOWN_S")
    rpc_timeout_s: float = Field(30.0, alias="RPC_TIMEOUT_S")
    rpc_max_retries: int = Field(5, alias="RPC_MAX_RETRIES")
    rpc_retry_delay_s: float = Field(0.25, alias="RPC_RETRY_DELAY_S")
    chain_id: int = Field(11155111, alias="CHAIN_ID")
    shielded_pool_address: str = Field("", alias="SHIELDED_POOL_ADDRESS")
    deployment_block: int = Field(0, alias="DEPLOYMENT_BLOCK")

    # INGESTION
    ingest_block_batch_size: int = Field(2_000, alias="INGEST_BLOCK_BATCH_SIZE")
    ingest_concurrency: int = Field(4, alias="INGEST_CONCURRENCY")
    ingest_adaptive_chunks: bool = Field(False, alias="INGEST_ADAPTIVE_CHUNKS")
    # Restrict eth_getLogs to registry topics; unknown event versions are then never seen
    ingest_topic_filter: bool = Field(False, alias="INGEST_TOPIC_FILTER")

    # STORE
    store_max_retries: int = Field(5, alias="STORE_MAX_RETRIES")
    store_retry_base_delay_s: float = Field(0.25, alias="STORE_RETRY_BASE_DELAY_S")
    store_retry_max_delay_s: float = Field(5.0, alias="STORE_RETRY_MAX_DELAY_S")

    # SIGNATURES
    signature_eras: list[str] = Field(["v1", "v2", "v2.1"], alias="SIGNATURE_ERAS")

    @model_validator(mode="after")
    def assemble_db_urls(self) -> "Settings":
        user = quote_plus(self.postgres_user)
        password = quote_plus(self.postgres_password.get_secret_value())
        host = self.postgres_server
        port = self.postgres_port
        db = self.postgres_db

        if not self.database_url:
            self.database_url = f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{db}"

        if not self.sync_database_url:
            self.sync_database_url = f"postgresql://{user}:{password}@{host}:{port}/{db}"

        return self

    @property
    def rpc_endpoints(self) -> list[str]:
        endpoints = [self.rpc_url, *self.rpc_urls]
        return list(dict.fromkeys(url for url in endpoints if url))

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )


settings: Settings = Settings()
