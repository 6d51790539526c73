"""
Draft reconciliation — merging the locally cached draft with the server copy.

For every step the copy holding the higher version wins wholesale; on a tie
the remote copy wins. There is no field-level merge.
"""
from typing import Dict, Optional

from card_application.core.draft import ApplicationDraft, apply_step_payload, step_payload, utcnow
from card_application.core.forms import DraftVersion
from card_application.core.steps import list_steps, step_at
from card_application.schemas.schemas import DraftState


def step_key(step_number: int) -> str:
    return f"step_{step_number}"


def _step_number(key: str) -> Optional[int]:
    prefix, _, number = key.partition("_")
    if prefix != "step" or not number.isdigit():
        return None
    return int(number)


def _versions(state: DraftState) -> Dict[int, DraftVersion]:
    return {entry.step_number: entry for entry in state.step_versions}


def draft_to_state(draft: ApplicationDraft, session_id: str, application_id: Optional[str] = None) -> DraftState:
    """Express a local draft in the server's DraftState shape."""
    completed = [v.step_number for v in draft.step_versions if v.is_complete]
    return DraftState(
        session_id=session_id,
        application_id=application_id or draft.id,
        current_step=draft.current_step,
        highest_completed_step=max(completed, default=-1),
        draft_version=max((v.version for v in draft.step_versions), default=0),
        step_versions=sorted(draft.step_versions, key=lambda v: v.step_number),
        data={step_key(s.number): step_payload(draft, s) for s in list_steps()},
        last_saved_at=draft.updated_at,
        is_submitted=draft.submitted_at is not None,
    )


def reconcile(local: DraftState, remote: DraftState) -> DraftState:
    """Per-step last-accepted-write-wins merge. `reconcile(d, d) == d`."""
    local_versions, remote_versions = _versions(local), _versions(remote)
    step_numbers = set(local_versions) | set(remote_versions)
    for key in (*local.data, *remote.data):
        number = _step_number(key)
        if number is not None:
            step_numbers.add(number)

    data = {}
    versions = []
    for number in sorted(step_numbers):
        key = step_key(number)
        local_entry, remote_entry = local_versions.get(number), remote_versions.get(number)
        local_version = local_entry.version if local_entry else 0
        remote_version = remote_entry.version if remote_entry else 0

        if local_version > remote_version:
            winner, other, entry = local, remote, local_entry
        else:
            winner, other, entry = remote, local, remote_entry

        if key in winner.data:
            data[key] = winner.data[key]
        elif key in other.data:
            data[key] = other.data[key]
        if entry is not None:
            versions.append(entry)

    return DraftState(
        session_id=remote.session_id,
        application_id=remote.application_id,
        current_step=max(local.current_step, remote.current_step),
        highest_completed_step=max(local.highest_completed_step, remote.highest_completed_step),
        draft_version=max(local.draft_version, remote.draft_version),
        step_versions=versions,
        data=data,
        last_saved_at=max(local.last_saved_at, remote.last_saved_at),
        is_submitted=local.is_submitted or remote.is_submitted,
    )


def apply_state(draft: ApplicationDraft, state: DraftState) -> ApplicationDraft:
    """Load a DraftState into `draft` in place and return it."""
    for key, payload in state.data.items():
        number = _step_number(key)
        if number is not None and step_at(number) is not None:
            apply_step_payload(draft, number, payload)
    draft.step_versions = sorted(state.step_versions, key=lambda v: v.step_number)
    draft.current_step = state.current_step
    if state.is_submitted and draft.submitted_at is None:
        draft.submitted_at = utcnow()
    draft._touch()
    return draft
