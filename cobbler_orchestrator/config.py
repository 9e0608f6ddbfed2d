"""
Configuration loading and validation for Cobbler.

This module handles:
- Loading config.yaml from the repo root
- Environment variable resolution (${VAR} syntax)
- Default values for every optional field
- Reading prompt override files into content at load time
- Writing a default config file for new repositories

The loaded CobblerConfig is passed explicitly to every component; nothing
in the package reads configuration from process-wide state.
"""

from __future__ import annotations

import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


CONFIG_FILENAME = "config.yaml"

DEFAULT_CLAUDE_ARGS = [
    "--dangerously-skip-permissions",
    "-p",
    "--verbose",
    "--output-format",
    "stream-json",
]


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


@dataclass
class ProjectConfig:
    """Where the generated source lives and what counts as source."""
    source_dirs: list[str] = field(default_factory=lambda: ["src", "tests"])
    source_extensions: list[str] = field(default_factory=lambda: [".py"])
    test_markers: list[str] = field(default_factory=lambda: ["tests/", "test_", "_test."])


@dataclass
class GenerationConfig:
    """Generation branch naming and run bounds."""
    prefix: str = "generation-"                # Branch prefix for generations
    cycles: int = 0                            # Measure+stitch cycles per run (0 = unlimited)
    branch: str = ""                           # Explicit generation branch to operate on
    cleanup_dirs: list[str] = field(default_factory=list)  # Removed at stop/reset


@dataclass
class MeasureConfig:
    """Measure phase configuration."""
    max_issues: int = 1                        # Ceiling on imported tasks per measure
    estimated_lines_min: int = 250
    estimated_lines_max: int = 350
    require_generation: bool = False           # Fail measure outside a generation
    user_prompt: str = ""                      # Extra instructions appended to the prompt
    prompt_path: str = ""                      # Override for prompts/measure.yaml
    prompt: str = ""                           # Loaded content of prompt_path


@dataclass
class StitchConfig:
    """Stitch phase configuration."""
    max_per_cycle: int = 10                    # Tasks per stitch call (0 = unlimited)
    max_total: int = 0                         # Tasks per run across cycles (0 = unlimited)
    prompt_path: str = ""                      # Override for prompts/stitch.yaml
    prompt: str = ""                           # Loaded content of prompt_path


@dataclass
class ContextConfig:
    """Project context assembly configuration."""
    max_bytes: int = 0                         # Serialized context budget (0 = no limit)
    include: list[str] = field(default_factory=lambda: ["docs/**/*.md", "docs/**/*.yaml"])
    exclude: list[str] = field(default_factory=list)


@dataclass
class ClaudeConfig:
    """Claude CLI configuration (run inside podman)."""
    binary: str = "claude"
    args: list[str] = field(default_factory=lambda: list(DEFAULT_CLAUDE_ARGS))
    max_time_sec: int = 300                    # Wall-clock budget per invocation
    secrets_dir: str = ".secrets"
    token_file: str = "claude.json"
    container_credentials_path: str = "/home/claude/.claude/.credentials.json"


@dataclass
class PodmanConfig:
    """Podman sandbox configuration."""
    binary: str = "podman"
    image: str = "claude-cli"
    extra_args: list[str] = field(default_factory=list)


@dataclass
class GitConfig:
    """Git configuration for branching and worktrees."""
    binary: str = "git"
    base_branch: str = "main"                  # Fallback when no base branch is recorded
    worktrees_root: str = ""                   # Empty means <tmp>/<repo>-worktrees


@dataclass
class IssuesConfig:
    """Issue store (beads) configuration."""
    binary: str = "bd"
    beads_dir: str = ".beads"


@dataclass
class CobblerConfig:
    """
    Main configuration for Cobbler.

    This is the top-level config loaded from config.yaml.
    """
    # Paths
    repo_root: str = "."
    cobbler_dir: str = ".cobbler"
    history_dir: str = "history"

    # Nested configurations
    project: ProjectConfig = field(default_factory=ProjectConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    measure: MeasureConfig = field(default_factory=MeasureConfig)
    stitch: StitchConfig = field(default_factory=StitchConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    claude: ClaudeConfig = field(default_factory=ClaudeConfig)
    podman: PodmanConfig = field(default_factory=PodmanConfig)
    git: GitConfig = field(default_factory=GitConfig)
    issues: IssuesConfig = field(default_factory=IssuesConfig)

    def __post_init__(self) -> None:
        """Convert paths to absolute paths based on repo_root."""
        self.repo_root = str(Path(self.repo_root).absolute())

    @property
    def root_path(self) -> Path:
        """Absolute path to the repository root."""
        return Path(self.repo_root)

    @property
    def cobbler_path(self) -> Path:
        """Absolute path to .cobbler directory."""
        return self.root_path / self.cobbler_dir

    @property
    def history_path(self) -> Path:
        """Absolute path to the invocation history directory."""
        return self.cobbler_path / self.history_dir

    @property
    def logs_path(self) -> Path:
        """Absolute path to logs directory."""
        return self.cobbler_path / "logs"

    @property
    def base_branch_file(self) -> str:
        """Repo-relative path of the base branch bookkeeping file."""
        return f"{self.cobbler_dir.rstrip('/')}/base-branch"

    @property
    def measure_log_file(self) -> str:
        """Repo-relative path of the accumulated measure proposals."""
        return f"{self.cobbler_dir.rstrip('/')}/measure.yaml"

    @property
    def worktrees_path(self) -> Path:
        """Directory holding task worktrees."""
        if self.git.worktrees_root:
            root = Path(self.git.worktrees_root)
            return root if root.is_absolute() else self.root_path / root
        return Path(tempfile.gettempdir()) / f"{self.root_path.name}-worktrees"

    @property
    def credentials_path(self) -> Path:
        """Host path of the Claude credentials file."""
        return self.root_path / self.claude.secrets_dir / self.claude.token_file


def _resolve_env_vars(value: Any) -> Any:
    """
    Resolve environment variables in a value.

    Supports ${VAR} syntax for environment variable substitution.
    Returns the original value if it's not a string.
    """
    if isinstance(value, str):
        pattern = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

        def replace(match: re.Match) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigError(f"Environment variable ${{{var_name}}} is not set")
            return env_value

        return pattern.sub(replace, value)

    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]

    return value


def _read_prompt(repo_root: Path, prompt_path: str) -> str:
    """Read a prompt override file, relative to the repo root."""
    if not prompt_path:
        return ""
    path = Path(prompt_path)
    if not path.is_absolute():
        path = repo_root / path
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read prompt file {prompt_path}: {e}")


def _as_list(data: dict[str, Any], key: str, default: list[str]) -> list[str]:
    value = data.get(key, default)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"'{key}' must be a list, got {type(value).__name__}")
    return [str(item) for item in value]


def _parse_project_config(data: dict[str, Any]) -> ProjectConfig:
    """Parse project configuration from dict."""
    defaults = ProjectConfig()
    return ProjectConfig(
        source_dirs=_as_list(data, "source_dirs", defaults.source_dirs),
        source_extensions=_as_list(data, "source_extensions", defaults.source_extensions),
        test_markers=_as_list(data, "test_markers", defaults.test_markers),
    )


def _parse_generation_config(data: dict[str, Any]) -> GenerationConfig:
    """Parse generation configuration from dict."""
    config = GenerationConfig(
        prefix=data.get("prefix", "generation-"),
        cycles=int(data.get("cycles", 0)),
        branch=data.get("branch", "") or "",
        cleanup_dirs=_as_list(data, "cleanup_dirs", []),
    )
    if not config.prefix:
        raise ConfigError("generation.prefix must not be empty")
    if config.cycles < 0:
        raise ConfigError("generation.cycles must be >= 0")
    return config


def _parse_measure_config(data: dict[str, Any], repo_root: Path) -> MeasureConfig:
    """Parse measure configuration from dict."""
    config = MeasureConfig(
        max_issues=int(data.get("max_issues", 1)),
        estimated_lines_min=int(data.get("estimated_lines_min", 250)),
        estimated_lines_max=int(data.get("estimated_lines_max", 350)),
        require_generation=bool(data.get("require_generation", False)),
        user_prompt=data.get("user_prompt", "") or "",
        prompt_path=data.get("prompt_path", "") or "",
    )
    if config.max_issues < 1:
        raise ConfigError("measure.max_issues must be >= 1")
    if config.estimated_lines_min > config.estimated_lines_max:
        raise ConfigError("measure.estimated_lines_min exceeds estimated_lines_max")
    config.prompt = _read_prompt(repo_root, config.prompt_path)
    return config


def _parse_stitch_config(data: dict[str, Any], repo_root: Path) -> StitchConfig:
    """Parse stitch configuration from dict."""
    config = StitchConfig(
        max_per_cycle=int(data.get("max_per_cycle", 10)),
        max_total=int(data.get("max_total", 0)),
        prompt_path=data.get("prompt_path", "") or "",
    )
    if config.max_per_cycle < 0 or config.max_total < 0:
        raise ConfigError("stitch limits must be >= 0")
    config.prompt = _read_prompt(repo_root, config.prompt_path)
    return config


def _parse_context_config(data: dict[str, Any]) -> ContextConfig:
    """Parse context configuration from dict."""
    defaults = ContextConfig()
    config = ContextConfig(
        max_bytes=int(data.get("max_bytes", 0)),
        include=_as_list(data, "include", defaults.include),
        exclude=_as_list(data, "exclude", []),
    )
    if config.max_bytes < 0:
        raise ConfigError("context.max_bytes must be >= 0")
    return config


def _parse_claude_config(data: dict[str, Any]) -> ClaudeConfig:
    """Parse Claude configuration from dict."""
    defaults = ClaudeConfig()
    return ClaudeConfig(
        binary=data.get("binary", defaults.binary),
        args=_as_list(data, "args", defaults.args),
        max_time_sec=int(data.get("max_time_sec", 300)),
        secrets_dir=data.get("secrets_dir", defaults.secrets_dir),
        token_file=data.get("token_file", defaults.token_file),
        container_credentials_path=data.get(
            "container_credentials_path", defaults.container_credentials_path
        ),
    )


def _parse_podman_config(data: dict[str, Any]) -> PodmanConfig:
    """Parse podman configuration from dict."""
    return PodmanConfig(
        binary=data.get("binary", "podman"),
        image=data.get("image", "claude-cli"),
        extra_args=_as_list(data, "extra_args", []),
    )


def _parse_git_config(data: dict[str, Any]) -> GitConfig:
    """Parse git configuration from dict."""
    return GitConfig(
        binary=data.get("binary", "git"),
        base_branch=data.get("base_branch", "main"),
        worktrees_root=data.get("worktrees_root", "") or "",
    )


def _parse_issues_config(data: dict[str, Any]) -> IssuesConfig:
    """Parse issue store configuration from dict."""
    return IssuesConfig(
        binary=data.get("binary", "bd"),
        beads_dir=data.get("beads_dir", ".beads"),
    )


def default_config(repo_root: str | Path = ".") -> CobblerConfig:
    """Return a configuration with every default applied."""
    return CobblerConfig(repo_root=str(repo_root))


def load_config(
    config_path: Optional[str | Path] = None,
    repo_root: Optional[str | Path] = None,
) -> CobblerConfig:
    """
    Load configuration from config.yaml.

    Args:
        config_path: Optional path to config file. If not provided,
                     looks for config.yaml in the repo root.
        repo_root: Repository root. Defaults to the config file's directory
                   (or the current directory when no path is given).

    Returns:
        CobblerConfig: Loaded configuration. A missing file yields defaults.

    Raises:
        ConfigError: If config is invalid or cannot be loaded.
    """
    root = Path(repo_root) if repo_root is not None else Path(".")
    if config_path is None:
        path = root / CONFIG_FILENAME
    else:
        path = Path(config_path)
        if repo_root is None:
            root = path.parent

    if not path.exists():
        if config_path is not None:
            raise ConfigError(f"Configuration file not found: {config_path}")
        return default_config(root)

    try:
        with open(path, "r") as f:
            raw_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if raw_data is None:
        return default_config(root)
    if not isinstance(raw_data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    data = _resolve_env_vars(raw_data)
    root = Path(data.get("repo_root", root))
    if not root.is_absolute():
        root = path.parent / root
    root_path = root.absolute()

    for section in ("project", "generation", "measure", "stitch", "context",
                    "claude", "podman", "git", "issues"):
        value = data.get(section, {})
        if value is not None and not isinstance(value, dict):
            raise ConfigError(f"Section '{section}' must be a mapping")

    return CobblerConfig(
        repo_root=str(root_path),
        cobbler_dir=data.get("cobbler_dir", ".cobbler"),
        history_dir=data.get("history_dir", "history"),
        project=_parse_project_config(data.get("project") or {}),
        generation=_parse_generation_config(data.get("generation") or {}),
        measure=_parse_measure_config(data.get("measure") or {}, root_path),
        stitch=_parse_stitch_config(data.get("stitch") or {}, root_path),
        context=_parse_context_config(data.get("context") or {}),
        claude=_parse_claude_config(data.get("claude") or {}),
        podman=_parse_podman_config(data.get("podman") or {}),
        git=_parse_git_config(data.get("git") or {}),
        issues=_parse_issues_config(data.get("issues") or {}),
    )


DEFAULT_CONFIG_YAML = """\
# Cobbler configuration
project:
  source_dirs: [src, tests]
  source_extensions: [.py]

generation:
  prefix: generation-
  cycles: 0            # 0 = run until the backlog is empty
  cleanup_dirs: []

measure:
  max_issues: 1
  estimated_lines_min: 250
  estimated_lines_max: 350
  user_prompt: ""

stitch:
  max_per_cycle: 10
  max_total: 0

context:
  max_bytes: 0         # 0 = no limit
  include: ["docs/**/*.md", "docs/**/*.yaml"]
  exclude: []

claude:
  max_time_sec: 300
  secrets_dir: .secrets
  token_file: claude.json

podman:
  image: claude-cli

git:
  base_branch: main
"""


def write_default_config(path: str | Path) -> Path:
    """
    Write a commented default config file.

    Raises:
        ConfigError: If the file already exists.
    """
    path = Path(path)
    if path.exists():
        raise ConfigError(f"Configuration file already exists: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_YAML, encoding="utf-8")
    return path
