from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv
from typing import Optional
load_dotenv()  # this will read your .env into os.environ
class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Upstream blockchain feed
    blockchain_api_base: str = Field("https://blockchain.info")
    http_timeout_sec: float = Field(10.0)

    # Whale pipeline
    whale_min_btc: float = Field(100.0)
    default_btc_price: float = Field(93000.0)
    price_lookup_enabled: bool = Field(False)
    # net flow (BTC) beyond which aggregate sentiment leaves neutral
    flow_sentiment_threshold_btc: float = Field(100.0)
    exchange_addresses_file: Optional[str] = Field(None)

    # Background polling / data lake
    WHALE_POLL_ENABLED: bool = Field(default=False)
    WHALE_POLL_INTERVAL_SEC: int = Field(default=60)
    WHALE_PARQUET_ENABLED: bool = Field(default=False)
    WHALE_PATH: str = Field("data_lake/whales")

    # Redis snapshot store
    REDIS_URL: Optional[str] = Field(None)
    redis_host: str = Field("localhost")
    redis_port: int = Field(6379)
    redis_db: int = Field(0)
    FLOW_NAMESPACE: str = Field("flows")
    FLOW_TTL_SEC: Optional[int] = Field(86400)

    # Realtime channel
    realtime_path: str = Field("/ws")
    realtime_snapshot_size: int = Field(50, ge=1)
    reconnect_delay_sec: float = Field(3.0)
    connect_timeout_sec: float = Field(3.0)

    # Consumer-side invalidation + alerts
    orders_query_key: str = Field("/api/orders")
    alert_info_size: float = Field(100.0)
    alert_critical_size: float = Field(1000.0)
    alert_info_duration_ms: int = Field(7000)
    alert_critical_duration_ms: int = Field(10000)

    #fastAPI
    ingest_host: str = Field("0.0.0.0")
    ingest_port: int = Field(8000)
    #CORS
    cors_origins: list[str] = Field(["*"])
    #Logging
    log_level: str = Field("INFO")
    #Metrics/Prometheus
    metrics_path: str = Field("/metrics")

settings = Settings()
