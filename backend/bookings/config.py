from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/bookings.db"
    log_level: str = "INFO"

    # Local time zone; every timestamp inside the core is naive local time
    timezone: str = "Europe/Stockholm"

    # Redis configuration
    redis_url: str = "redis://localhost:6379"

    # Celery configuration
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/0"
    expiry_sweep_minutes: int = 5
    reminder_window_minutes: int = 60

    # Booking rules
    immediate_minutes: int = 5
    translator_cancel_cutoff_hours: int = 24
    customer_withdraw_hours: int = 24
    town_check_override: bool = False
    support_phone: str = "+46 73 75 86 865"

    # Night window for delayed pushes: [night_start_hour, business_start_hour)
    night_start_hour: int = 22
    business_start_hour: int = 7

    # Dispatch settings
    dispatch_timeout_seconds: float = 5.0
    dispatch_max_parallel: int = 10

    # SMS gateway
    sms_from_number: str = "DigitalTolk"
    sms_api_url: str = "https://api.46elks.com/a1/sms"
    sms_api_username: str = ""
    sms_api_password: str = ""

    # Push gateway (OneSignal REST API)
    push_api_url: str = "https://onesignal.com/api/v1/notifications"
    push_app_id: str = ""
    push_api_key: str = ""
    push_title: str = "DigitalTolk"

    # Mail
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_user: str = ""
    smtp_password: str = ""
    mail_from: str = "noreply@digitaltolk.se"

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
