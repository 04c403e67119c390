from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/mira.db"
    debug: bool = False
    log_level: str = "INFO"

    # Conversational hygiene
    rate_limit_max_requests: int = 15
    rate_limit_window_seconds: float = 60.0
    dedup_ttl_seconds: float = 60 * 60
    ticket_ttl_seconds: float = 24 * 60 * 60
    welcome_interval_seconds: float = 24 * 60 * 60
    general_cooldown_seconds: float = 5 * 60
    max_input_chars: int = 2000

    # Maintenance cadence
    staff_directory_ttl_seconds: float = 5 * 60
    directory_refresh_interval_seconds: float = 5 * 60
    dedup_sweep_interval_seconds: float = 30 * 60
    rate_limit_sweep_interval_seconds: float = 15 * 60
    ticket_sweep_interval_seconds: float = 60 * 60
    flush_interval_seconds: float = 5 * 60
    analytics_flush_every: int = 10
    maintenance_enabled: bool = True

    # ChatFlow WhatsApp gateway
    chatflow_api_url: str = "https://app.chatflow.kz/api/v1"
    chatflow_token: str | None = None
    chatflow_instance_id: str | None = None
    staff_jid_suffix: str = "@s.whatsapp.net"
    webhook_secret: str | None = None

    # Google Sheets / Drive
    google_api_key: str | None = None
    sheet_id: str | None = None
    sheet_name: str = "Sheet1"
    factory_sheet_id: str | None = None
    factory_sheet_name: str = "WES"
    staff_sheet_id: str | None = None
    staff_sheet_name: str = "SF01"
    elevation_avg_sheet_id: str | None = None
    elevation_avg_sheet_name: str = "Sheet1"
    drive_folder_id: str | None = None

    # Alerts
    alert_bot_token: str | None = None
    alert_chat_id: str | None = None

    # Business contact details used in replies
    support_phone: str = "+94 112 581 358"
    support_email: str = "info@merctea.lk"
    display_timezone: str = "Asia/Colombo"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
