"""Application settings using Pydantic Settings."""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Repository access
    repo_mode: Literal["local", "sandbox"] = Field(default="local")
    repo_path: Path = Field(default_factory=Path.cwd)
    github_repo: str | None = Field(default=None)
    github_token: str | None = Field(default=None)
    workspace_path: Path = Field(default=Path(__file__).parent.parent / "workspace")

    # Model backend
    anthropic_api_key: str | None = Field(default=None)
    model: str = Field(default="anthropic/claude-opus-4-5-20251101")
    max_tokens: int = Field(default=8192)
    model_timeout: int = Field(default=300)

    # Agent loop
    agent_max_iterations: int = Field(default=20)

    # Command execution
    command_timeout: int = Field(default=300)
    max_output_bytes: int = Field(default=100 * 1024)
    command_policy_path: Path = Field(
        default=Path(__file__).parent / "command_policy.yaml"
    )
    build_cmd: str = Field(default="./build.sh build")
    test_cmd: str = Field(default="./build.sh test")

    # Git
    git_timeout: int = Field(default=120)
    commit_trailer: str = Field(
        default="Co-Authored-By: Repo Agent <repo-agent@users.noreply.github.com>"
    )

    # Project guidelines
    guidelines_file: str = Field(default="CLAUDE.md")
    guidelines_max_chars: int = Field(default=20000)

    # Conversation storage
    store_backend: Literal["memory", "redis"] = Field(default="memory")
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_namespace: str = Field(default="repo-agent")
    conversation_ttl_hours: int = Field(default=24)
    cleanup_interval_seconds: int = Field(default=3600)

    # API settings
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")


settings = Settings()


def configure_repo_path(root: Path) -> None:
    """Point the agent at a local repository, overriding any sandbox configuration."""
    settings.repo_path = root.expanduser().resolve()
    settings.repo_mode = "local"
