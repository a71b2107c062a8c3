"""Runtime helpers for storysync CLI orchestration."""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from .config import SyncConfig, load_config
from .env_auth import EnvAuthConfig, create_env_auth_manager
from .github_rest import GitHubRestClient
from .logging import configure_logging, get_logger


class _HandlerCallable(Protocol):
    def __call__(self) -> Any: ...


def prepare_config(
    args: Any, *, loader: Callable[[str | Path | None], SyncConfig] = load_config
) -> SyncConfig:
    """Load ``SyncConfig`` for the parsed namespace and apply CLI overrides."""
    if not hasattr(args, "config"):
        raise AttributeError("Command namespace is missing 'config' attribute")
    cfg = loader(args.config)
    repo_override = getattr(args, "repo", None)
    if repo_override:
        cfg.github_repo = repo_override
    if getattr(args, "json_logs", False):
        cfg.logging_json_enabled = True
    level = "WARNING" if getattr(args, "quiet", False) else cfg.logging_level
    configure_logging(json_logging=cfg.logging_json_enabled, level=level)
    return cfg


def build_client(cfg: SyncConfig) -> GitHubRestClient:
    """Resolve the token and build the REST client; raises ``AuthError`` first."""
    manager = create_env_auth_manager(
        EnvAuthConfig(
            load_dotenv=cfg.env_auth_load_dotenv,
            dotenv_path=cfg.env_auth_dotenv_path,
        )
    )
    token = manager.require_github_token()
    # validates owner/name before any request
    repo = f"{cfg.owner}/{cfg.repo_name}"
    return GitHubRestClient(
        token=token,
        repo=repo,
        base_url=cfg.github_base_url,
        rate_limit_threshold=cfg.rate_limit_threshold,
        max_rate_limit_pause=cfg.max_rate_limit_pause,
    )


def execute_command(handler: _HandlerCallable, command: str) -> int:
    """Run a command handler and log its duration and exit code."""
    start = time.monotonic()
    try:
        result = handler()
    except Exception:
        get_logger().log_performance(
            f"command_{command}", (time.monotonic() - start) * 1000, exit_code=1
        )
        raise
    exit_code = int(result) if result is not None else 0
    get_logger().log_performance(
        f"command_{command}", (time.monotonic() - start) * 1000, exit_code=exit_code
    )
    return exit_code


__all__ = ["prepare_config", "build_client", "execute_command"]
