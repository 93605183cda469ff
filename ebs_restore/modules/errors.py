"""Exception types raised while planning and executing a volume restore."""

from typing import Any, Dict, List, Optional


class RestoreError(Exception):
    """Base exception for restore operations.

    Every error carries enough context to resume a restore by hand: which
    instance, which device, which volume or snapshot, and which stage failed.
    """

    def __init__(
        self,
        message: str,
        instance_id: Optional[str] = None,
        device: Optional[str] = None,
        volume_id: Optional[str] = None,
        snapshot_id: Optional[str] = None,
        stage: Optional[str] = None,
        cause: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.instance_id = instance_id
        self.device = device
        self.volume_id = volume_id
        self.snapshot_id = snapshot_id
        self.stage = stage
        self.cause = cause
        self.context = context or {}

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "kind": self.kind,
            "message": self.message,
            "instance_id": self.instance_id,
            "device": self.device,
            "volume_id": self.volume_id,
            "snapshot_id": self.snapshot_id,
            "stage": self.stage,
            "cause": str(self.cause) if self.cause else None,
            "context": self.context,
        }


class NotFound(RestoreError):
    """No instance matched the lookup criteria."""

    def __init__(self, criteria: List[str]):
        super().__init__(
            f"No instances found matching {', '.join(criteria)}",
            context={"criteria": list(criteria)},
        )
        self.criteria = list(criteria)


class NoCandidateSnapshot(RestoreError):
    """A device has no completed snapshot of a matching size."""

    def __init__(self, instance_id: str, device: str, volume_id: str, volume_size: int):
        super().__init__(
            f"No completed {volume_size} GiB snapshot available for {device} "
            f"(volume {volume_id}) on instance {instance_id}",
            instance_id=instance_id,
            device=device,
            volume_id=volume_id,
            stage="plan",
            context={"volume_size": volume_size},
        )
        self.volume_size = volume_size


class SelectionAborted(RestoreError):
    """The operator declined to choose a snapshot for a device."""

    def __init__(self, instance_id: str, device: str, reason: str = "selection aborted by operator"):
        super().__init__(
            f"Snapshot selection for {device} on instance {instance_id}: {reason}",
            instance_id=instance_id,
            device=device,
            stage="plan",
        )


class UpstreamError(RestoreError):
    """A call to the EC2 control plane failed."""

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        if operation:
            self.context.setdefault("operation", operation)


class PartialCreateFailure(UpstreamError):
    """At least one volume of a plan could not be created.

    ``succeeded_volume_ids`` lists the volumes that were created anyway; they
    are left in place, unattached.
    """

    def __init__(self, instance_id: str, succeeded_volume_ids: List[str],
                 error: BaseException, snapshot_id: Optional[str] = None,
                 device: Optional[str] = None):
        created = ", ".join(succeeded_volume_ids) or "none"
        super().__init__(
            f"Volume creation failed for instance {instance_id}"
            f"{f' device {device}' if device else ''}: {error} (created: {created})",
            operation="create_volume",
            instance_id=instance_id,
            device=device,
            snapshot_id=snapshot_id,
            stage="materialize",
            cause=error,
            context={"succeeded_volume_ids": list(succeeded_volume_ids)},
        )
        self.succeeded_volume_ids = list(succeeded_volume_ids)
        self.error = error


class VolumeNotAvailable(UpstreamError):
    """Created volumes did not reach the available state."""

    def __init__(self, instance_id: str, volume_ids: List[str], error: BaseException):
        super().__init__(
            f"Volumes {', '.join(volume_ids)} for instance {instance_id} "
            f"did not become available: {error}",
            operation="wait_volume_available",
            instance_id=instance_id,
            stage="materialize",
            cause=error,
            context={"volume_ids": list(volume_ids)},
        )
        self.volume_ids = list(volume_ids)


class _SwapFailure(UpstreamError):
    def __init__(self, action: str, instance_id: str, device: str, volume_id: str,
                 error: BaseException, completed: Optional[List[Any]] = None):
        super().__init__(
            f"Failed to {action} volume {volume_id} "
            f"{'from' if action == 'detach' else 'to'} {device} on instance {instance_id}: {error}",
            operation=f"{action}_volume",
            instance_id=instance_id,
            device=device,
            volume_id=volume_id,
            stage="swap",
            cause=error,
        )
        self.completed = list(completed or [])


class DetachFailed(_SwapFailure):
    """The original volume could not be detached from its device."""

    def __init__(self, instance_id: str, device: str, volume_id: str,
                 error: BaseException, completed: Optional[List[Any]] = None):
        super().__init__("detach", instance_id, device, volume_id, error, completed)


class AttachFailed(_SwapFailure):
    """The new volume could not be attached to its device.

    The original volume has already been detached at this point.
    """

    def __init__(self, instance_id: str, device: str, volume_id: str,
                 error: BaseException, completed: Optional[List[Any]] = None,
                 detached_volume_id: Optional[str] = None):
        super().__init__("attach", instance_id, device, volume_id, error, completed)
        self.detached_volume_id = detached_volume_id
        if detached_volume_id:
            self.context["detached_volume_id"] = detached_volume_id


class CorrelationMissing(RestoreError):
    """No materialized volume is tagged for a device of the instance."""

    def __init__(self, instance_id: str, device: str, volume_ids: List[str]):
        super().__init__(
            f"No restored volume tagged for {device} on instance {instance_id} "
            f"among {', '.join(volume_ids) or 'no volumes'}",
            instance_id=instance_id,
            device=device,
            stage="swap",
            context={"volume_ids": list(volume_ids)},
        )


class WaitCancelled(RestoreError):
    """A wait was interrupted; the remote resource state is unknown."""

    def __init__(self, waiter_name: str, resource_ids: List[str]):
        super().__init__(
            f"Wait for {waiter_name} on {', '.join(resource_ids)} was cancelled; "
            f"the resources may or may not have reached that state",
            context={"waiter": waiter_name, "resource_ids": list(resource_ids)},
        )
        self.waiter_name = waiter_name
        self.resource_ids = list(resource_ids)


class WaitTimeout(RestoreError):
    """A resource did not reach the desired state within the timeout."""

    def __init__(self, waiter_name: str, resource_ids: List[str], timeout: int):
        super().__init__(
            f"{', '.join(resource_ids)} did not reach {waiter_name} within {timeout} seconds",
            context={"waiter": waiter_name, "resource_ids": list(resource_ids), "timeout": timeout},
        )
        self.waiter_name = waiter_name
        self.resource_ids = list(resource_ids)
        self.timeout = timeout


class InstanceStateError(RestoreError):
    """The instance is in a state the requested restore cannot handle."""

    def __init__(self, instance_id: str, state: str, reason: str):
        super().__init__(
            f"Instance {instance_id} is {state}: {reason}",
            instance_id=instance_id,
            context={"state": state},
        )
        self.state = state


class RestoreCancelled(RestoreError):
    """The run was interrupted before this instance's restore started; nothing was changed."""

    def __init__(self, instance_id: str):
        super().__init__(
            f"Restore of {instance_id} was cancelled before it started",
            instance_id=instance_id,
            stage='pending',
        )
