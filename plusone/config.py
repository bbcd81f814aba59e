"""Application configuration using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # App Settings
    debug: bool = False
    log_level: str = "INFO"
    app_host: str = "0.0.0.0"
    app_port: int = 8001

    # Log files (JSON, rotated)
    log_dir: str = "logs"
    log_max_bytes: int = 5_000_000
    log_backup_count: int = 3

    # ==========================================================================
    # Remote Ledger (Redis)
    # ==========================================================================
    # Empty redis_url means the remote service is not configured (local mode)
    remote_enabled: bool = True
    redis_url: str = ""
    remote_key_prefix: str = "plusone"
    remote_connect_timeout: float = 5.0

    # Local snapshot location (orders.json / products.json)
    data_dir: str = "data/ledger"

    # ==========================================================================
    # Reconciliation Windows
    # ==========================================================================
    order_dedupe_window_minutes: int = 10
    product_merge_window_minutes: int = 60

    # ==========================================================================
    # Screen Monitor
    # ==========================================================================
    monitor_interval_seconds: float = 15.0
    change_grid_size: int = 50  # Frames are downsampled to grid x grid samples
    change_pixel_threshold: int = 30  # Summed per-channel difference per sample
    change_min_percent: float = 2.0  # Minimum change score to analyze a frame
    monitor_log_size: int = 10

    wake_lock_enabled: bool = True
    capture_url: str = "https://chat.line.biz/"
    capture_width: int = 1280
    capture_height: int = 900

    # ==========================================================================
    # Chat Groups
    # ==========================================================================
    default_group_name: str = "預設群組"
    group_options: list[str] = ["Eight", "Cactus"]
    seller_name: str = ""  # Authorized sender hint passed to the extraction model

    # ==========================================================================
    # AI & LLM Configuration
    # ==========================================================================
    openai_api_key: str = ""
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.2
    llm_max_tokens: int = 4000
    llm_timeout_seconds: float = 60.0

    # Cost Tracking
    track_llm_costs: bool = True
    llm_cost_limit_per_day: float = 20.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
