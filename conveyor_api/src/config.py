from pydantic_settings import BaseSettings
from functools import lru_cache

class Settings(BaseSettings):
    pipelines_file: str = "pipelines.yml"
    github_webhook_secret: str = ""
    github_api_url: str = "https://api.github.com"
    github_token: str = ""
    pull_request_file_pages: int = 30  # GitHub lists at most 3000 files per pull request
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    connect_k8s: bool = True

    class Config:
        env_file = ".env"

@lru_cache()
def get_settings() -> Settings:
    return Settings()
