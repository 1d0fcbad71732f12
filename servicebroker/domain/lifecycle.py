from __future__ import annotations

from enum import Enum


class InstanceStatus(str, Enum):
    PROVISIONING = "provisioning"
    ACTIVE = "active"
    DEPROVISIONING = "deprovisioning"
    DELETED = "deleted"


class PollResult(str, Enum):
    IN_PROGRESS = "in_progress"
    CREATED = "created"
    DELETED = "deleted"
    FAILED = "failed"


class OperationState(str, Enum):
    # Values match the wire states of the last_operation endpoint.
    IN_PROGRESS = "in progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def next_status(current: InstanceStatus | str, result: PollResult) -> InstanceStatus:
    """Return the status an instance moves to after a poll of its backend operation.

    In-progress and failed polls leave the stored status untouched; failed operations
    are reported to the caller but never cleaned up automatically. A completed
    operation lands on ``deleted`` or ``active`` depending on what the provider says
    the operation was, regardless of the stored status.
    """
    status = InstanceStatus(current)
    if status is InstanceStatus.DELETED:
        return status
    if result is PollResult.DELETED:
        return InstanceStatus.DELETED
    if result is PollResult.CREATED:
        return InstanceStatus.ACTIVE
    return status


def operation_state(result: PollResult) -> OperationState:
    # Both completion variants are reported as success.
    if result is PollResult.IN_PROGRESS:
        return OperationState.IN_PROGRESS
    if result is PollResult.FAILED:
        return OperationState.FAILED
    return OperationState.SUCCEEDED
