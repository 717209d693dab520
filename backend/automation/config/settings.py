"""Automation Settings - Central Configuration"""
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Automation engine settings loaded from environment variables"""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="AUTOMATION_",
        case_sensitive=False,
        extra="ignore"
    )
    
    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "ticket_automation_dev"
    
    # Logging
    logs_path: str = "./logs"
    log_level: str = "INFO"
    log_to_file: bool = True
    
    # External collaborators (team resolution, notifications)
    external_call_timeout_seconds: float = 5.0
    notification_webhook_url: str = ""
    
    # Scheduler host
    schedule_tick_seconds: int = 60
    escalation_tick_seconds: int = 60
    escalation_batch_size: int = 200
    default_timezone: str = "UTC"
    schedule_claim_lease_seconds: int = 900
    
    # Default escalation path swap
    default_path_swap_retries: int = 5
    
    # Environment
    environment: str = "development"
    
    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
