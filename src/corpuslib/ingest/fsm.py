"""Upload item lifecycle finite state machine.

Each status change of an UploadItem is validated against an ephemeral
FSM positioned at the item's current status.  The FSM is purely a
validation tool -- it does NOT mutate items or have on_enter_state
callbacks.  The UploadQueue applies the change after validation.
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from corpuslib.ingest.exceptions import InvalidTransitionError
from corpuslib.models import UploadStatus


class UploadItemSM(StateMachine):
    """Five-state lifecycle for a file's journey through ingestion.

    States:
        queued     -- Waiting for an admission slot.
        uploading  -- Admitted; text extraction in flight.
        processing -- Document persistence and embedding in flight.
        complete   -- Document persisted with an embedding attached.
        error      -- A step failed (or the file was rejected at submit).
    """

    queued = State("queued", initial=True, value="queued")
    uploading = State("uploading", value="uploading")
    processing = State("processing", value="processing")
    complete = State("complete", value="complete", final=True)
    error = State("error", value="error")

    start_upload = queued.to(uploading)
    start_processing = uploading.to(processing)
    complete_processing = processing.to(complete)
    fail_upload = uploading.to(error)
    fail_processing = processing.to(error)
    reject = queued.to(error)
    retry = error.to(queued)


_EVENTS: dict[tuple[UploadStatus, UploadStatus], str] = {
    (UploadStatus.QUEUED, UploadStatus.UPLOADING): "start_upload",
    (UploadStatus.UPLOADING, UploadStatus.PROCESSING): "start_processing",
    (UploadStatus.PROCESSING, UploadStatus.COMPLETE): "complete_processing",
    (UploadStatus.UPLOADING, UploadStatus.ERROR): "fail_upload",
    (UploadStatus.PROCESSING, UploadStatus.ERROR): "fail_processing",
    (UploadStatus.QUEUED, UploadStatus.ERROR): "reject",
    (UploadStatus.ERROR, UploadStatus.QUEUED): "retry",
}


def create_fsm(current_state: str | UploadStatus) -> UploadItemSM:
    """Create an FSM instance at the given status.

    Args:
        current_state: One of 'queued', 'uploading', 'processing',
            'complete', 'error'.
    """
    return UploadItemSM(start_value=UploadStatus(current_state).value)


def check_transition(current: UploadStatus, target: UploadStatus) -> str:
    """Validate ``current -> target`` and return the FSM event name.

    Raises:
        InvalidTransitionError: If the transition is not legal.
    """
    event = _EVENTS.get((current, target))
    if event is None:
        raise InvalidTransitionError(
            f"Illegal transition {current.value} -> {target.value}"
        )
    fsm = create_fsm(current)
    try:
        fsm.send(event)
    except TransitionNotAllowed as exc:
        raise InvalidTransitionError(str(exc)) from exc
    return event
