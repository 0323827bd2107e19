"""
Execution Service Provider.

Builds the process-wide ``ExecutionService`` from the SQL repositories and the
server settings, and exposes it to the API layer as a FastAPI dependency.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from hero_engine.agent_core.factory import build_service
from hero_engine.agent_core.oracles.llm import PydanticAIJudgmentOracle, PydanticAIPlanningOracle
from hero_engine.agent_core.repos.sql import build_sql_repos
from hero_engine.agent_core.service import ExecutionService
from hero_engine.core.logging_config import get_logger
from hero_engine.server.core.config import Settings, settings
from hero_engine.server.core.database import async_session_maker

logger = get_logger(__name__)

_service: Optional[ExecutionService] = None


def create_execution_service(config: Settings = settings) -> ExecutionService:
    """
    Wire an ``ExecutionService`` from settings.

    Without ``HERO_PLANNER_MODEL`` the planner replays ``context["plan"]``;
    without ``HERO_JUDGE_MODEL`` guard hooks use the pattern oracle.
    """
    planner = PydanticAIPlanningOracle(config.planner_model) if config.planner_model else None
    judgment = PydanticAIJudgmentOracle(config.judge_model) if config.judge_model else None
    workspace = Path(config.workspace_root).resolve() if config.workspace_root else None
    logger.info(
        "Building execution service (planner=%s, judge=%s, workspace=%s)",
        config.planner_model or "scripted",
        config.judge_model or "patterns",
        workspace,
    )
    return build_service(
        repos=build_sql_repos(session_factory=async_session_maker),
        planner=planner,
        judgment=judgment,
        workspace_root=workspace,
        config=config.engine,
        retention=config.checkpoint_retention,
        pricing=config.pricing,
    )


def get_execution_service() -> ExecutionService:
    """Return the process-wide ``ExecutionService``, creating it on first use."""
    global _service
    if _service is None:
        _service = create_execution_service()
    return _service


def reset_execution_service() -> None:
    global _service
    _service = None
