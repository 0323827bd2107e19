from __future__ import annotations

from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

import pytest
import pytest_asyncio

from hero_engine.agent_core.capabilities.base import CapabilityResult
from hero_engine.agent_core.factory import EngineComponents, build_engine
from hero_engine.agent_core.repos.memory import InMemoryRepoBundle, build_memory_repos
from hero_engine.agent_core.runtime.engine import ExecutionEngine
from hero_engine.agent_core.schemas.domain import (
    AgentProfile,
    AgentType,
    AutonomyProfile,
    Execution,
    Step,
)

USER_ID = "user-1"


class RecordingExecutor:
    """Executor that succeeds without side effects and remembers every step it ran."""

    def __init__(self, *, fail_actions: Optional[set[str]] = None) -> None:
        self.calls: List[Step] = []
        self._fail = fail_actions or set()

    async def execute(self, execution: Execution, step: Step) -> CapabilityResult:
        self.calls.append(step)
        if step.action in self._fail:
            return CapabilityResult.failure(f"{step.action} failed")
        return CapabilityResult(ok=True, output={"action": step.action, "echo": dict(step.input)})


@pytest.fixture
def repos() -> InMemoryRepoBundle:
    return build_memory_repos()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest_asyncio.fixture
async def agent(repos: InMemoryRepoBundle) -> AgentProfile:
    profile = AgentProfile(user_id=USER_ID, name="coder", agent_type=AgentType.coder)
    await repos.agents.create(profile)
    return profile


@pytest_asyncio.fixture
async def unrestricted_agent(repos: InMemoryRepoBundle) -> AgentProfile:
    profile = AgentProfile(
        user_id=USER_ID,
        name="ops",
        agent_type=AgentType.ops,
        autonomy_profile=AutonomyProfile.unrestricted,
    )
    await repos.agents.create(profile)
    return profile


@pytest.fixture
def make_parts(repos: InMemoryRepoBundle, workspace: Path) -> Callable[..., EngineComponents]:
    """Build engine components over the in-memory repos with the built-in hooks registered."""

    def _make(**kwargs: Any) -> EngineComponents:
        kwargs.setdefault("workspace_root", workspace)
        parts = build_engine(repos=repos, **kwargs)
        parts.registry.populate_builtins()
        return parts

    return _make


@pytest.fixture
def parts(make_parts: Callable[..., EngineComponents]) -> EngineComponents:
    return make_parts()


@pytest.fixture
def engine(parts: EngineComponents) -> ExecutionEngine:
    return parts.engine


@pytest.fixture
def new_execution(agent: AgentProfile) -> Callable[..., Awaitable[Execution]]:
    """Create an idle execution of ``agent`` whose scripted plan is ``plan``."""

    async def _make(
        engine: ExecutionEngine,
        plan: List[Any],
        *,
        goal: str = "Tidy up the project files",
        profile: Optional[AgentProfile] = None,
        **fields: Any,
    ) -> Execution:
        owner = profile or agent
        execution = Execution(
            user_id=owner.user_id,
            agent_id=owner.id,
            agent_type=owner.agent_type,
            goal=goal,
            context={"plan": plan},
            **fields,
        )
        return await engine.create(execution)

    return _make

@pytest.fixture
def recorder() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def lint_failing_recorder() -> RecordingExecutor:
    return RecordingExecutor(fail_actions={"lint"})
