"""Repository access."""

from src.repo.manager import (
    LocalRepo,
    RepoManager,
    SandboxRepo,
    build_clone_url,
    create_repo_manager,
    extract_repo_name,
)

__all__ = [
    "LocalRepo",
    "RepoManager",
    "SandboxRepo",
    "build_clone_url",
    "create_repo_manager",
    "extract_repo_name",
]
