from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List, Literal

class Settings(BaseSettings):
    database_url: str = "sqlite:///./conveyor.db"

    # Kubernetes settings
    k8s_namespace: str = "conveyor"
    k8s_in_cluster: bool = False  # Set True when running inside K8s

    # Job settings
    job_ttl_after_finished: int = 300  # Clean up jobs after 5 min
    job_poll_interval: float = 2.0
    # Node the controller runs on (downward API); step pods mount workspaces from it
    node_name: str = ""
    output_limit: int = 64 * 1024  # Bytes of step output kept per step

    # Workspaces and artifacts
    workspace_root: str = "/var/lib/conveyor/workspaces"
    artifacts_root: str = "/var/lib/conveyor/artifacts"
    clone_timeout: int = 120

    # Scheduling
    max_concurrent_runs: int = 2
    default_timeout: int = 1800  # 30 minutes
    shutdown_policy: Literal["drain", "cancel"] = "cancel"
    run_history_limit: int = 500
    # Refs the repository is watched on; events for other refs are ignored
    monitored_refs: List[str] = ["+:refs/heads/*", "+:refs/pull/*/head"]

    # Commit status publishing
    github_api_url: str = "https://api.github.com"
    github_token: str = ""
    status_context_prefix: str = "conveyor"
    publish_attempts: int = 3
    publish_backoff: float = 1.0
    published_states_kept: int = 1024  # (sha, context) pairs remembered to skip repeats
    public_url: str = ""

    class Config:
        env_file = ".env"

@lru_cache()
def get_settings() -> Settings:
    return Settings()
