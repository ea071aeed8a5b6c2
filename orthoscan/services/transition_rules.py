"""
Transition Rules.

Pure-function module holding the three state machines of the production
workflow: case phase, per-tray state and lab board status.

Functions are stateless: current state in, decision out.  Services apply
the decision to the document.
"""

from __future__ import annotations

from typing import Optional

from orthoscan.models.enums import CasePhase, LabStatus, TrayState

PHASE_ORDER: tuple[CasePhase, ...] = tuple(CasePhase)
TRAY_ORDER: tuple[TrayState, ...] = tuple(TrayState)
LAB_STATUS_ORDER: tuple[LabStatus, ...] = tuple(LabStatus)


# ---------------------------------------------------------------------------
# Case phase
# ---------------------------------------------------------------------------

def can_advance_phase(current: CasePhase, target: CasePhase) -> bool:
    """Phases only move forward; skipping ahead is allowed."""
    return PHASE_ORDER.index(target) > PHASE_ORDER.index(current)


# ---------------------------------------------------------------------------
# Tray state
# ---------------------------------------------------------------------------

def tray_transition_error(current: TrayState, target: TrayState) -> Optional[str]:
    """Validate a manual tray state change.

    Returns ``None`` when the move is allowed (the adjacent next state, or
    the same state as an idempotent no-op) and an error message otherwise.
    """
    current_rank = TRAY_ORDER.index(current)
    target_rank = TRAY_ORDER.index(target)
    if target_rank == current_rank:
        return None
    if target_rank < current_rank:
        return (
            f"Tray state cannot regress from '{current}' to '{target}'."
        )
    if target_rank != current_rank + 1:
        return (
            f"Tray state must advance one step at a time: "
            f"'{current}' can only move to '{TRAY_ORDER[current_rank + 1]}'."
        )
    return None


def can_sync_tray(current: TrayState, target: TrayState) -> bool:
    """Whether lab progress may move a tray from *current* to *target*.

    Lab progress never regresses a tray and never touches a delivered one.
    Unlike manual changes it may skip states (``pendente`` to ``pronta``).
    """
    if current == TrayState.ENTREGUE:
        return False
    return TRAY_ORDER.index(target) > TRAY_ORDER.index(current)


def tray_target_for_lab_status(status: LabStatus) -> Optional[TrayState]:
    """Tray state implied by a lab status, or ``None`` for no change."""
    if status == LabStatus.EM_PRODUCAO:
        return TrayState.EM_PRODUCAO
    if status == LabStatus.PRONTAS:
        return TrayState.PRONTA
    return None


# ---------------------------------------------------------------------------
# Lab board status
# ---------------------------------------------------------------------------

def can_move_to_status(current: LabStatus, target: LabStatus) -> bool:
    """Moves are allowed between adjacent columns, forward or back."""
    return target in (current, next_status(current), previous_status(current))


def next_status(current: LabStatus) -> Optional[LabStatus]:
    rank = LAB_STATUS_ORDER.index(current)
    return LAB_STATUS_ORDER[rank + 1] if rank + 1 < len(LAB_STATUS_ORDER) else None


def previous_status(current: LabStatus) -> Optional[LabStatus]:
    rank = LAB_STATUS_ORDER.index(current)
    return LAB_STATUS_ORDER[rank - 1] if rank > 0 else None
