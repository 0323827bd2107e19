"""Unit tests for server services dependencies.

Tests verify the ``ServiceDep`` wiring, the ``X-User-Id`` identity
dependency and the process-wide service provider.
"""

from unittest.mock import patch

import pytest
from fastapi import HTTPException

from hero_engine.agent_core.oracles.scripted import ScriptedPlanningOracle
from hero_engine.agent_core.service import ExecutionService
from hero_engine.server.core.config import Settings
from hero_engine.server.services.deps import ServiceDep, get_current_user
from hero_engine.server.services.engine import (
    create_execution_service,
    get_execution_service,
    reset_execution_service,
)


class TestServiceDep:
    def test_uses_get_execution_service(self) -> None:
        depends_obj = ServiceDep.__metadata__[0]
        assert depends_obj.dependency == get_execution_service


class TestCurrentUser:
    async def test_reads_the_header(self) -> None:
        assert await get_current_user(" user-7 ") == "user-7"

    @pytest.mark.parametrize("value", [None, "", "   "])
    async def test_missing_header(self, value) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(value)
        assert exc_info.value.status_code == 401


class TestServiceProvider:
    def test_singleton(self) -> None:
        reset_execution_service()
        try:
            first = get_execution_service()
            assert isinstance(first, ExecutionService)
            assert get_execution_service() is first
        finally:
            reset_execution_service()

    def test_scripted_planner_without_model(self) -> None:
        service = create_execution_service(Settings(_env_file=None, HERO_PLANNER_MODEL=None))
        assert isinstance(service.engine.deps.planner, ScriptedPlanningOracle)

    def test_model_planner_from_settings(self) -> None:
        with patch("hero_engine.server.services.engine.PydanticAIPlanningOracle") as oracle_cls:
            create_execution_service(Settings(_env_file=None, HERO_PLANNER_MODEL="test"))
        oracle_cls.assert_called_once_with("test")

    def test_step_ceiling_from_settings(self) -> None:
        service = create_execution_service(Settings(_env_file=None, HERO_MAX_STEPS=9))
        assert service.engine.config.default_max_steps == 9
