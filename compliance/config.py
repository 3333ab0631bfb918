from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'Compliance Management'
    app_env: str = 'local'
    app_timezone: str = 'UTC'
    database_url: str = 'sqlite:///./compliance.db'
    auth_secret: str = 'change-me'
    cache_backend: str = 'memory'
    cache_redis_url: str | None = None
    default_cache_ttl: int = 60
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200
    compliance_default_max_file_size: int = 2 * 1024 * 1024
    storage_backend: str = 'local'
    storage_local_dir: str = './compliance-files'
    storage_public_base_url: str = 'http://127.0.0.1:8000/compliance-files'
    storage_bucket: str = 'compliance-files'
    supabase_url: str = ''
    supabase_service_key: str = ''
    storage_timeout_seconds: float = 60.0
    deadline_reminder_days: int = 3


settings = Settings()
