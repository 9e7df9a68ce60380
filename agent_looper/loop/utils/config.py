"""Loop configuration loading and controller assembly.

Settings are read from the ``[tool.agent-looper]`` table of a
``pyproject.toml`` or from the top level of a ``looper.toml``:

    [tool.agent-looper]
    max_iterations = 5
    chain = ["producer", "critic"]

    [tool.agent-looper.agents.producer]
    command = "my-agent --role producer"
"""
from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Optional

import pydantic as pd

from agent_looper.loop.contracts import AgentContext, ContextMode

logger = logging.getLogger(__name__)

TOOL_TABLE = "agent-looper"
CONFIG_FILENAMES = ["looper.toml", "pyproject.toml"]
REQUIRED_ROLES = ("judge",)


class AgentCommandConfig(pd.BaseModel):
    """Command line for one subprocess-backed sub-agent."""

    command: str
    cwd: str = "."
    timeout_seconds: Optional[float] = None

    model_config = pd.ConfigDict(extra="forbid")

    @pd.field_validator("command")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("command must not be empty")
        return value


class LoopSettings(pd.BaseModel):
    """Tunable settings for one loop controller.

    Attributes:
        max_iterations: Upper bound on passes per run
        summary_interval_seconds: Period of the summarization timer
        summary_event_threshold: Buffered events that force a summary
        context_mode: How earlier outputs reach later agents in a pass
        implicit_start: Treat free text as ``start <text>``
        agent_timeout_seconds: Default timeout for subprocess agents
        agents: Sub-agent commands by role
        chain: Roles run in order in every pass
    """

    max_iterations: int = pd.Field(default=5, ge=1)
    summary_interval_seconds: float = pd.Field(default=30.0, gt=0)
    summary_event_threshold: int = pd.Field(default=10, ge=1)
    context_mode: ContextMode = "none"
    implicit_start: bool = False
    agent_timeout_seconds: float = pd.Field(default=300, gt=0)
    agents: Dict[str, AgentCommandConfig] = pd.Field(default_factory=dict)
    chain: List[str] = pd.Field(default_factory=lambda: ["producer", "critic"])

    model_config = pd.ConfigDict(extra="forbid")

    @pd.field_validator("chain")
    @classmethod
    def _chain_not_empty(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("chain must name at least one role")
        return value

    def missing_roles(self) -> List[str]:
        """Roles referenced by the chain or required by the loop but not configured."""
        needed = list(self.chain) + [r for r in REQUIRED_ROLES if r not in self.chain]
        return [role for role in needed if role not in self.agents]


def _read_toml(path: Path) -> Optional[Dict[str, Any]]:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to parse {path}: {e}")
        return None


def find_config_file(repo_root: str | Path = ".") -> Optional[Path]:
    """Find the first config file in ``repo_root`` that holds loop settings."""
    root = Path(repo_root).resolve()
    for filename in CONFIG_FILENAMES:
        config_path = root / filename
        if not config_path.is_file():
            continue
        if filename == "pyproject.toml":
            data = _read_toml(config_path) or {}
            if TOOL_TABLE not in data.get("tool", {}):
                continue
        logger.debug(f"Found config file: {config_path}")
        return config_path
    return None


def load_settings(path: str | Path | None = None) -> LoopSettings:
    """Load LoopSettings from a TOML file.

    Args:
        path: Config file. When None, ``looper.toml`` or a ``pyproject.toml``
            with a ``[tool.agent-looper]`` table is searched in the current
            directory.

    Returns:
        Parsed settings. Defaults when the file is missing or malformed.

    Raises:
        pydantic.ValidationError: If the file holds invalid values.
    """
    config_path = Path(path) if path is not None else find_config_file()
    if config_path is None or not config_path.is_file():
        if path is not None:
            logger.warning(f"Config file not found: {config_path}, using defaults")
        return LoopSettings()

    data = _read_toml(config_path)
    if data is None:
        return LoopSettings()

    if config_path.name == "pyproject.toml":
        data = data.get("tool", {}).get(TOOL_TABLE, {})

    return LoopSettings.model_validate(data)


def build_controller(
    settings: LoopSettings,
    sink=None,
    repo_root: str | Path | None = None,
    context: Optional[AgentContext] = None,
):
    """Assemble a LoopController of subprocess agents from settings.

    Args:
        settings: Loaded settings.
        sink: Event sink for the controller.
        repo_root: Directory agent working directories are resolved against.
        context: Execution context passed to every sub-agent.

    Returns:
        A configured LoopController.

    Raises:
        ValueError: If a role in the chain, or the judge, has no command.
    """
    from agent_looper.loop.controller import LoopController
    from agent_looper.loop.judge import JudgeAdapter
    from agent_looper.loop.single_pass import SinglePassExecutor
    from agent_looper.loop.summarization import SummarizationObserver
    from agent_looper.loop.utils.executor import SubprocessAgent

    missing = settings.missing_roles()
    if missing:
        raise ValueError(f"No command configured for role(s): {', '.join(missing)}")

    root = Path(repo_root) if repo_root is not None else None

    def make_agent(role: str) -> SubprocessAgent:
        cfg = settings.agents[role]
        return SubprocessAgent(
            name=role,
            command=cfg.command,
            repo_root=root,
            cwd=cfg.cwd,
            timeout=cfg.timeout_seconds or settings.agent_timeout_seconds,
        )

    ctx = context or AgentContext(workspace_path=str(root) if root else None)
    single_pass = SinglePassExecutor(
        [make_agent(role) for role in settings.chain],
        context_mode=settings.context_mode,
        context=ctx,
    )
    judge = JudgeAdapter(make_agent("judge"), context=ctx)

    summarizer = None
    if "summarizer" in settings.agents:
        summarizer = SummarizationObserver(
            make_agent("summarizer"),
            interval_seconds=settings.summary_interval_seconds,
            event_threshold=settings.summary_event_threshold,
        )

    return LoopController(
        single_pass,
        judge,
        max_iterations=settings.max_iterations,
        sink=sink,
        summarizer=summarizer,
        implicit_start=settings.implicit_start,
    )
