"""Data models for instances, snapshots and restore plans."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def get_tag_value(tags: Optional[List[Dict]], key: str) -> Optional[str]:
    """Return the value of tag ``key`` from an EC2 tag list."""
    for tag in tags or []:
        if tag.get('Key') == key:
            return tag.get('Value')
    return None


class SnapshotState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"


class LifecycleState(str, Enum):
    """Where an instance is in the restore life cycle."""

    PLANNED = "planned"
    STOPPING = "stopping"
    STOPPED = "stopped"
    RUNNING = "running"
    SWAPPING = "swapping"
    SWAPPED = "swapped"
    STARTING = "starting"
    FAILED = "failed"


@dataclass(frozen=True)
class Attachment:
    """One block device mapping on an instance.

    ``volume_id`` is None for devices without an EBS volume behind them.
    """

    device: str
    volume_id: Optional[str]
    volume_size: Optional[int] = None
    volume_type: Optional[str] = None

    @property
    def is_ebs(self) -> bool:
        return self.volume_id is not None


@dataclass(frozen=True)
class Instance:
    instance_id: str
    name: Optional[str]
    state: str
    availability_zone: Optional[str]
    attachments: Tuple[Attachment, ...] = ()

    @classmethod
    def from_aws(cls, instance: Dict, volumes: Optional[Dict[str, Dict]] = None) -> "Instance":
        """Build an instance from a describe_instances entry.

        Args:
            instance: One element of ``Reservations[].Instances[]``
            volumes: describe_volumes entries keyed by volume ID, used for size and type
        """
        volumes = volumes or {}
        attachments = []
        for mapping in instance.get('BlockDeviceMappings', []):
            ebs = mapping.get('Ebs')
            volume_id = ebs.get('VolumeId') if ebs else None
            volume = volumes.get(volume_id, {}) if volume_id else {}
            attachments.append(Attachment(
                device=mapping['DeviceName'],
                volume_id=volume_id,
                volume_size=volume.get('Size'),
                volume_type=volume.get('VolumeType'),
            ))
        return cls(
            instance_id=instance['InstanceId'],
            name=get_tag_value(instance.get('Tags'), 'Name'),
            state=instance.get('State', {}).get('Name', 'unknown'),
            availability_zone=instance.get('Placement', {}).get('AvailabilityZone'),
            attachments=tuple(attachments),
        )

    @property
    def ebs_attachments(self) -> List[Attachment]:
        return [a for a in self.attachments if a.is_ebs]

    @property
    def volume_ids(self) -> List[str]:
        return [a.volume_id for a in self.ebs_attachments]

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.instance_id})" if self.name else self.instance_id


@dataclass(frozen=True)
class Snapshot:
    snapshot_id: str
    volume_id: Optional[str]
    size: int
    state: str
    start_time: Optional[datetime] = None
    name: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_aws(cls, snapshot: Dict) -> "Snapshot":
        return cls(
            snapshot_id=snapshot['SnapshotId'],
            volume_id=snapshot.get('VolumeId'),
            size=snapshot.get('VolumeSize', 0),
            state=snapshot.get('State', SnapshotState.PENDING.value),
            start_time=snapshot.get('StartTime'),
            name=get_tag_value(snapshot.get('Tags'), 'Name'),
            description=snapshot.get('Description'),
        )

    @property
    def is_completed(self) -> bool:
        return self.state == SnapshotState.COMPLETED.value


@dataclass(frozen=True)
class PlanEntry:
    device: str
    volume_id: str
    snapshot_id: str
    size: int
    volume_type: Optional[str] = None


@dataclass(frozen=True)
class RestorePlan:
    """Device to snapshot mapping for one instance, in attachment order."""

    instance_id: str
    availability_zone: Optional[str]
    entries: Tuple[PlanEntry, ...]

    @property
    def devices(self) -> List[str]:
        return [e.device for e in self.entries]

    @property
    def snapshots(self) -> Dict[str, str]:
        return {e.device: e.snapshot_id for e in self.entries}

    @property
    def original_volumes(self) -> Dict[str, str]:
        return {e.device: e.volume_id for e in self.entries}

    def entry_for(self, device: str) -> PlanEntry:
        for entry in self.entries:
            if entry.device == device:
                return entry
        raise KeyError(device)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "availability_zone": self.availability_zone,
            "entries": [
                {
                    "device": e.device,
                    "volume_id": e.volume_id,
                    "snapshot_id": e.snapshot_id,
                    "size": e.size,
                    "volume_type": e.volume_type,
                }
                for e in self.entries
            ],
        }


@dataclass(frozen=True)
class MaterializedVolume:
    """A volume created from a plan snapshot, tagged with its target device."""

    volume_id: str
    device: Optional[str]
    size: Optional[int]
    state: str
    snapshot_id: Optional[str] = None

    @classmethod
    def from_aws(cls, volume: Dict, device_tag: str) -> "MaterializedVolume":
        return cls(
            volume_id=volume['VolumeId'],
            device=get_tag_value(volume.get('Tags'), device_tag),
            size=volume.get('Size'),
            state=volume.get('State', 'creating'),
            snapshot_id=volume.get('SnapshotId'),
        )


@dataclass(frozen=True)
class RestoreFlags:
    stop: bool = False
    start: bool = False
    execute: bool = False


@dataclass(frozen=True)
class SwapRecord:
    device: str
    old_volume_id: str
    new_volume_id: str


@dataclass
class RestoreResult:
    """Outcome of restoring one instance."""

    instance_id: str
    instance_name: Optional[str] = None
    plan: Optional[RestorePlan] = None
    flags: RestoreFlags = field(default_factory=RestoreFlags)
    state: LifecycleState = LifecycleState.PLANNED
    volumes: List[MaterializedVolume] = field(default_factory=list)
    swaps: List[SwapRecord] = field(default_factory=list)
    error: Optional[Exception] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    report_file: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def dry_run(self) -> bool:
        return not self.flags.execute

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        error = None
        if self.error is not None:
            to_dict = getattr(self.error, 'to_dict', None)
            error = to_dict() if to_dict else {"kind": type(self.error).__name__, "message": str(self.error)}
        return {
            "instance_id": self.instance_id,
            "instance_name": self.instance_name,
            "dry_run": self.dry_run,
            "flags": {"stop": self.flags.stop, "start": self.flags.start, "execute": self.flags.execute},
            "state": self.state.value,
            "plan": self.plan.to_dict() if self.plan else None,
            "volumes": [
                {"volume_id": v.volume_id, "device": v.device, "snapshot_id": v.snapshot_id, "state": v.state}
                for v in self.volumes
            ],
            "swaps": [
                {"device": s.device, "old_volume_id": s.old_volume_id, "new_volume_id": s.new_volume_id}
                for s in self.swaps
            ],
            "error": error,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
