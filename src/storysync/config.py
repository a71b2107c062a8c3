from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml

from .errors import ConfigError

CONFIG_DEFAULT = "storysync.config.yaml"
DEFAULT_ISSUE_LABELS = ["user-story"]


@dataclass
class SyncConfig:
    github_repo: str | None = None
    github_base_url: str = "https://api.github.com"
    issue_labels: list[str] = field(default_factory=lambda: list(DEFAULT_ISSUE_LABELS))
    csv_root: Path = Path("docs/requirements")
    template_file: Path = Path(".github/ISSUE_TEMPLATE/user-story.md")
    # Behavior
    mutation_delay: float = 1.0
    rate_limit_threshold: int = 100
    max_rate_limit_pause: float = 60.0
    dry_run_default: bool = False
    truncate_body_diff: int = 120
    # Documentation links
    docs_branch: str = "develop"
    # Output
    analysis_file: Path = Path("duplicate-analysis.json")
    summary_json: str | None = None
    # Logging configuration
    logging_json_enabled: bool = False
    logging_level: str = "INFO"
    # Environment authentication configuration
    env_auth_load_dotenv: bool = True
    env_auth_dotenv_path: str | None = None

    @property
    def owner(self) -> str:
        return self._repo_parts()[0]

    @property
    def repo_name(self) -> str:
        return self._repo_parts()[1]

    def _repo_parts(self) -> tuple[str, str]:
        if not self.github_repo or "/" not in self.github_repo:
            raise ConfigError(
                f"github.repo must be in 'owner/name' form (got {self.github_repo!r})"
            )
        owner, _, name = self.github_repo.partition("/")
        return owner, name


def _resolve_env_var(value: Any) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith('$'):
        return os.getenv(value[1:], value)  # Fallback to original if not found
    return value


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return cast(dict[str, Any], value)


def default_config(base: Path | None = None) -> SyncConfig:
    cfg = SyncConfig()
    if base is not None:
        cfg.csv_root = base / cfg.csv_root
        cfg.template_file = base / cfg.template_file
    return cfg


def load_config(path: str | Path | None) -> SyncConfig:
    """Load ``SyncConfig`` from YAML.

    A ``None`` path, or the default file name when it does not exist, yields
    defaults; an explicitly named file that is missing is an error.
    """
    if path is None:
        return default_config()
    p = Path(path)
    if not p.exists():
        if p.name == CONFIG_DEFAULT:
            return default_config()
        raise ConfigError(f'Configuration file not found: {p}')
    try:
        loaded = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {p}: {exc}") from exc
    raw = cast(dict[str, Any], loaded or {})
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration root in {p} must be a mapping")
    gh = _section(raw, 'github')
    src = _section(raw, 'source')
    behavior = _section(raw, 'behavior')
    docs = _section(raw, 'docs')
    out = _section(raw, 'output')
    logging_config = _section(raw, 'logging')
    env_auth = _section(raw, 'environment')

    base = p.parent
    labels_raw = gh.get('issue_labels', DEFAULT_ISSUE_LABELS)
    if isinstance(labels_raw, str):
        labels_raw = [part.strip() for part in labels_raw.split(',') if part.strip()]
    summary_json = out.get('summary_json')

    try:
        return SyncConfig(
            github_repo=_resolve_env_var(gh.get('repo')),
            github_base_url=gh.get('base_url', 'https://api.github.com'),
            issue_labels=[str(x) for x in labels_raw or []],
            csv_root=base / src.get('csv_root', 'docs/requirements'),
            template_file=base / src.get('template_file', '.github/ISSUE_TEMPLATE/user-story.md'),
            mutation_delay=float(behavior.get('mutation_delay', 1.0)),
            rate_limit_threshold=int(behavior.get('rate_limit_threshold', 100)),
            max_rate_limit_pause=float(behavior.get('max_rate_limit_pause', 60.0)),
            dry_run_default=bool(behavior.get('dry_run_default', False)),
            truncate_body_diff=int(behavior.get('truncate_body_diff', 120)),
            docs_branch=str(docs.get('branch', 'develop')),
            analysis_file=base / out.get('analysis_file', 'duplicate-analysis.json'),
            summary_json=str(base / summary_json) if summary_json else None,
            logging_json_enabled=bool(logging_config.get('json_enabled', False)),
            logging_level=str(logging_config.get('level', 'INFO')),
            env_auth_load_dotenv=bool(env_auth.get('load_dotenv', True)),
            env_auth_dotenv_path=env_auth.get('dotenv_path'),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value in {p}: {exc}") from exc


__all__ = ["CONFIG_DEFAULT", "ConfigError", "SyncConfig", "default_config", "load_config"]
