from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "filedrop"
    app_version: str = "dev"
    host: str = "0.0.0.0"
    port: int = 3000
    storage_root: str = "./storage"
    session_backend: str = "json"
    database_url: str = "sqlite:///./filedrop.db"
    database_auto_create: bool = True
    code_length: int = 8
    code_alphabet: str = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
    code_max_attempts: int = 64
    default_max_downloads: int = 1
    download_block_size: int = 64 * 1024
    merge_block_size: int = 1024 * 1024
    tracing_enabled: bool = False
    tracing_service_name: str = "filedrop"
    otlp_endpoint: str = "localhost:4317"
    otlp_insecure: bool = True


settings = Settings()
