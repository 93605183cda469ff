"""Turn an instance, its snapshots and an operator's choices into a RestorePlan."""

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional
from .errors import NoCandidateSnapshot, SelectionAborted
from .models import Attachment, Instance, PlanEntry, RestorePlan, Snapshot

logger = logging.getLogger(__name__)

# Called once per device with a non-empty candidate list; returns the chosen
# snapshot, or None to abort the whole plan.
SelectFn = Callable[[Attachment, List[Snapshot]], Optional[Snapshot]]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def candidates(snapshots: Iterable[Snapshot], volume_size: Optional[int]) -> List[Snapshot]:
    """Completed snapshots whose size equals ``volume_size``, in input order."""
    return [s for s in snapshots if s.is_completed and s.size == volume_size]


def _start_time(snapshot: Snapshot) -> datetime:
    start = snapshot.start_time
    if start is None:
        return _EPOCH
    if start.tzinfo is None:
        return start.replace(tzinfo=timezone.utc)
    return start


def newest_first(snapshots: Iterable[Snapshot]) -> List[Snapshot]:
    return sorted(snapshots, key=_start_time, reverse=True)


def select_latest(attachment: Attachment, snapshot_candidates: List[Snapshot]) -> Optional[Snapshot]:
    """Pick the newest candidate, preferring the device's own volume on ties."""
    if not snapshot_candidates:
        return None
    return max(
        snapshot_candidates,
        key=lambda s: (_start_time(s), s.volume_id == attachment.volume_id),
    )


def build_plan(instance: Instance, snapshots: List[Snapshot], select_fn: SelectFn) -> RestorePlan:
    """Resolve exactly one snapshot per EBS device of ``instance``.

    Devices are handled in attachment order and construction stops at the
    first device that cannot be resolved, so no partial plan is ever returned.

    Raises:
        NoCandidateSnapshot: a device has no completed snapshot of its size
        SelectionAborted: ``select_fn`` declined, or returned a non-candidate
    """
    entries = []
    for attachment in instance.ebs_attachments:
        device_candidates = candidates(snapshots, attachment.volume_size)
        if not device_candidates:
            logger.error(f"No candidate snapshots for {attachment.device} "
                         f"({attachment.volume_size} GiB) on {instance.instance_id}")
            raise NoCandidateSnapshot(instance.instance_id, attachment.device,
                                      attachment.volume_id, attachment.volume_size)

        chosen = select_fn(attachment, device_candidates)
        if chosen is None:
            logger.info(f"Snapshot selection aborted for {attachment.device} on {instance.instance_id}")
            raise SelectionAborted(instance.instance_id, attachment.device)
        if chosen not in device_candidates:
            raise SelectionAborted(instance.instance_id, attachment.device,
                                   reason=f"{chosen.snapshot_id} is not a candidate for this device")

        logger.info(f"Selected snapshot {chosen.snapshot_id} for {attachment.device} "
                    f"(volume {attachment.volume_id}) on {instance.instance_id}")
        entries.append(PlanEntry(
            device=attachment.device,
            volume_id=attachment.volume_id,
            snapshot_id=chosen.snapshot_id,
            size=chosen.size,
            volume_type=attachment.volume_type,
        ))

    return RestorePlan(
        instance_id=instance.instance_id,
        availability_zone=instance.availability_zone,
        entries=tuple(entries),
    )
