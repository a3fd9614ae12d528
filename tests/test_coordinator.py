from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from deploy_lens.domain.models import Component, CoordinationStatus
from deploy_lens.engine.coordinator import CoordinationInputs, derive_coordination_state

BACKEND_AT = datetime(2025, 9, 20, 12, 0, tzinfo=timezone.utc)


def _inputs(backend: bool, frontend: bool, gap_minutes: float = 3, **kwargs) -> CoordinationInputs:
    return CoordinationInputs(
        backend_update=backend,
        frontend_update=frontend,
        backend_updated_at=BACKEND_AT,
        frontend_updated_at=BACKEND_AT + timedelta(minutes=gap_minutes),
        **kwargs,
    )


@pytest.mark.parametrize(
    ("inputs", "status", "action"),
    [
        (_inputs(True, True, backend_stale=True), CoordinationStatus.BUILDS_OUT_OF_DATE, "rebuild"),
        (_inputs(False, False), CoordinationStatus.NO_UPDATES_AVAILABLE, None),
        (_inputs(True, True, 3), CoordinationStatus.BOTH_READY_COORDINATED, "deploy-both"),
        (_inputs(True, True, -10), CoordinationStatus.BOTH_READY_COORDINATED, "deploy-both"),
        (_inputs(True, True, 15), CoordinationStatus.BOTH_READY_INDEPENDENT, "deploy-independently"),
        (_inputs(True, False), CoordinationStatus.BACKEND_ONLY_READY, "deploy-backend"),
        (_inputs(False, True), CoordinationStatus.FRONTEND_ONLY_READY, "deploy-frontend"),
    ],
)
def test_state_table(inputs, status, action) -> None:
    state = derive_coordination_state(inputs)

    assert state.status is status
    assert state.recommended_action == action


def test_staleness_blocks_even_without_updates() -> None:
    state = derive_coordination_state(_inputs(False, False, backend_stale=True, frontend_stale=True))

    assert state.status is CoordinationStatus.BUILDS_OUT_OF_DATE
    assert state.blocking_components == (Component.BACKEND, Component.FRONTEND)
    assert "backend and frontend" in state.reason
    assert not state.allow_independent


def test_coordinated_still_allows_independent_deploys() -> None:
    state = derive_coordination_state(_inputs(True, True, 3))

    assert state.allow_independent
    assert state.to_dict()["status"] == "BOTH_READY_COORDINATED"


def test_missing_timestamp_is_independent() -> None:
    inputs = CoordinationInputs(backend_update=True, frontend_update=True, backend_updated_at=BACKEND_AT)

    assert derive_coordination_state(inputs).status is CoordinationStatus.BOTH_READY_INDEPENDENT


def test_custom_window() -> None:
    state = derive_coordination_state(_inputs(True, True, 15), window=timedelta(minutes=20))

    assert state.status is CoordinationStatus.BOTH_READY_COORDINATED
    assert "20 minutes" in state.reason
