"""Deployment readiness for a backend/frontend pair."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from deploy_lens.domain.models import Component, CoordinationState, CoordinationStatus

DEFAULT_COORDINATION_WINDOW = timedelta(minutes=10)


@dataclass(frozen=True)
class CoordinationInputs:
    backend_update: bool
    frontend_update: bool
    backend_stale: bool = False
    frontend_stale: bool = False
    backend_updated_at: datetime | None = None
    frontend_updated_at: datetime | None = None

    def stale_components(self) -> tuple[Component, ...]:
        stale = []
        if self.backend_stale:
            stale.append(Component.BACKEND)
        if self.frontend_stale:
            stale.append(Component.FRONTEND)
        return tuple(stale)


def _within_window(inputs: CoordinationInputs, window: timedelta) -> bool:
    if inputs.backend_updated_at is None or inputs.frontend_updated_at is None:
        return False
    return abs(inputs.backend_updated_at - inputs.frontend_updated_at) <= window


def derive_coordination_state(
    inputs: CoordinationInputs,
    window: timedelta = DEFAULT_COORDINATION_WINDOW,
) -> CoordinationState:
    """Evaluate the readiness rules in order; the first one that applies wins."""
    stale = inputs.stale_components()
    if stale:
        names = " and ".join(component.value for component in stale)
        return CoordinationState(
            status=CoordinationStatus.BUILDS_OUT_OF_DATE,
            reason=f"Production build for {names} is behind the main branch build",
            blocking_components=stale,
            recommended_action="rebuild",
        )

    if not inputs.backend_update and not inputs.frontend_update:
        return CoordinationState(
            status=CoordinationStatus.NO_UPDATES_AVAILABLE,
            reason="No newer builds than what is deployed",
        )

    if inputs.backend_update and inputs.frontend_update:
        if _within_window(inputs, window):
            minutes = int(window.total_seconds() // 60)
            return CoordinationState(
                status=CoordinationStatus.BOTH_READY_COORDINATED,
                reason=f"Backend and frontend builds are within {minutes} minutes of each other",
                recommended_action="deploy-both",
                allow_independent=True,
            )
        return CoordinationState(
            status=CoordinationStatus.BOTH_READY_INDEPENDENT,
            reason="Backend and frontend builds are not part of the same release",
            recommended_action="deploy-independently",
            allow_independent=True,
        )

    if inputs.backend_update:
        return CoordinationState(
            status=CoordinationStatus.BACKEND_ONLY_READY,
            reason="Only backend has a newer build",
            recommended_action="deploy-backend",
            allow_independent=True,
        )
    if inputs.frontend_update:
        return CoordinationState(
            status=CoordinationStatus.FRONTEND_ONLY_READY,
            reason="Only frontend has a newer build",
            recommended_action="deploy-frontend",
            allow_independent=True,
        )

    return CoordinationState(
        status=CoordinationStatus.UNKNOWN,
        reason="Deployment readiness could not be determined",
    )
