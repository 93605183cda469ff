"""
Pytest configuration and shared fixtures for ebs-snapshot-restore tests.

``FakeAWSClient`` stands in for ``AWSClient``: it keeps a tiny in-memory EC2
(instances, volumes, snapshots) and records every call in order so tests can
assert on call sequences.
"""

import signal
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from ebs_restore.modules.errors import UpstreamError, WaitCancelled, WaitTimeout
from ebs_restore.modules.models import Attachment, Instance, Snapshot

MUTATING_CALLS = {'stop_instance', 'start_instance', 'create_volume', 'detach_volume', 'attach_volume'}


def interrupt_main_thread() -> None:
    """Deliver SIGINT to the main thread, as Ctrl-C would, from any thread."""
    signal.pthread_kill(threading.main_thread().ident, signal.SIGINT)


def raw_instance(instance_id: str, devices: List[tuple], name: Optional[str] = None,
                 state: str = 'running', az: str = 'us-east-1a') -> Dict:
    """Build a describe_instances entry; ``devices`` is [(device, volume_id or None)]."""
    mappings = []
    for device, volume_id in devices:
        mapping = {'DeviceName': device}
        if volume_id:
            mapping['Ebs'] = {'VolumeId': volume_id, 'Status': 'attached'}
        mappings.append(mapping)
    instance = {
        'InstanceId': instance_id,
        'State': {'Name': state},
        'Placement': {'AvailabilityZone': az},
        'BlockDeviceMappings': mappings,
        'Tags': [],
    }
    if name:
        instance['Tags'].append({'Key': 'Name', 'Value': name})
    return instance


def raw_snapshot(snapshot_id: str, volume_id: str, size: int, state: str = 'completed',
                 day: int = 1, name: Optional[str] = None) -> Dict:
    snapshot = {
        'SnapshotId': snapshot_id,
        'VolumeId': volume_id,
        'VolumeSize': size,
        'State': state,
        'StartTime': datetime(2024, 1, day, tzinfo=timezone.utc),
    }
    if name:
        snapshot['Tags'] = [{'Key': 'Name', 'Value': name}]
    return snapshot


class FakeAWSClient:
    def __init__(self):
        self.instances: Dict[str, Dict] = {}
        self.volumes: Dict[str, Dict] = {}
        self.snapshots: List[Dict] = []
        self.calls: List[tuple] = []
        self.fail_create_for = set()
        self.fail_detach_for = set()
        self.fail_attach_for = set()
        self.timeout_waiters = set()
        self.cancel_waiters = set()
        self.cancelled = threading.Event()
        self.on_wait = None
        self._lock = threading.Lock()
        self._counter = 0

    # setup helpers

    def add_instance(self, instance_id: str, devices: List[tuple], name: Optional[str] = None,
                     state: str = 'running') -> None:
        """``devices`` is [(device, volume_id, size)]; volume_id None means no EBS."""
        self.instances[instance_id] = raw_instance(
            instance_id, [(d, v) for d, v, _ in devices], name=name, state=state)
        for device, volume_id, size in devices:
            if volume_id:
                self.volumes[volume_id] = {
                    'VolumeId': volume_id, 'Size': size, 'State': 'in-use', 'VolumeType': 'gp3',
                    'Attachments': [{'InstanceId': instance_id, 'Device': device, 'State': 'attached'}],
                }

    def add_snapshot(self, *args, **kwargs) -> None:
        self.snapshots.append(raw_snapshot(*args, **kwargs))

    def _record(self, name: str, *args) -> None:
        with self._lock:
            self.calls.append((name,) + args)

    def call_names(self, only_mutating: bool = False) -> List[str]:
        return [c[0] for c in self.calls if not only_mutating or c[0] in MUTATING_CALLS]

    def mutating_calls(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in MUTATING_CALLS]

    # AWSClient interface

    def describe_instances(self, instance_ids=None, names=None):
        self._record('describe_instances', tuple(instance_ids or ()), tuple(names or ()))
        found = []
        for raw in self.instances.values():
            name = next((t['Value'] for t in raw['Tags'] if t['Key'] == 'Name'), None)
            if instance_ids and raw['InstanceId'] not in instance_ids:
                continue
            if names and name not in names:
                continue
            found.append(raw)
        return found

    def get_instance_state(self, instance_id):
        self._record('get_instance_state', instance_id)
        return self.instances[instance_id]['State']['Name']

    def describe_volumes(self, volume_ids):
        self._record('describe_volumes', tuple(volume_ids))
        return [dict(self.volumes[v]) for v in volume_ids if v in self.volumes]

    def describe_snapshots(self, volume_ids):
        self._record('describe_snapshots', tuple(volume_ids))
        return [s for s in self.snapshots if s['VolumeId'] in volume_ids]

    def stop_instance(self, instance_id):
        self._record('stop_instance', instance_id)
        self.instances[instance_id]['State']['Name'] = 'stopping'

    def start_instance(self, instance_id):
        self._record('start_instance', instance_id)
        self.instances[instance_id]['State']['Name'] = 'pending'

    def wait_for_instance_state(self, instance_id, desired_state, timeout=3600):
        self._record('wait_for_instance_state', instance_id, desired_state)
        self._maybe_fail_wait(f'instance_{desired_state}', [instance_id], timeout)
        self.instances[instance_id]['State']['Name'] = desired_state

    def wait_for_instance_status_ok(self, instance_id, timeout=3600):
        self._record('wait_for_instance_status_ok', instance_id)
        self._maybe_fail_wait('instance_status_ok', [instance_id], timeout)

    def create_volume(self, snapshot_id, availability_zone, volume_type=None, tags=None):
        self._record('create_volume', snapshot_id)
        if snapshot_id in self.fail_create_for:
            raise UpstreamError(f"Error creating volume from snapshot {snapshot_id}: InsufficientVolumeCapacity",
                                operation='create_volume', snapshot_id=snapshot_id)
        snapshot = next(s for s in self.snapshots if s['SnapshotId'] == snapshot_id)
        with self._lock:
            self._counter += 1
            volume_id = f"vol-new{self._counter}"
        self.volumes[volume_id] = {
            'VolumeId': volume_id, 'Size': snapshot['VolumeSize'], 'State': 'creating',
            'SnapshotId': snapshot_id, 'AvailabilityZone': availability_zone,
            'VolumeType': volume_type, 'Tags': list(tags or []), 'Attachments': [],
        }
        return volume_id

    def wait_for_volumes_available(self, volume_ids, timeout=3600):
        self._record('wait_for_volumes_available', tuple(volume_ids))
        self._maybe_fail_wait('volume_available', volume_ids, timeout)
        for volume_id in volume_ids:
            self.volumes[volume_id]['State'] = 'available'

    def detach_volume(self, volume_id, instance_id, device):
        self._record('detach_volume', instance_id, device, volume_id)
        if device in self.fail_detach_for:
            raise UpstreamError(f"Error detaching volume {volume_id}: IncorrectState",
                                operation='detach_volume', volume_id=volume_id)
        self.volumes[volume_id]['Attachments'] = []
        self.instances[instance_id]['BlockDeviceMappings'] = [
            m for m in self.instances[instance_id]['BlockDeviceMappings'] if m['DeviceName'] != device
        ]

    def attach_volume(self, volume_id, instance_id, device):
        self._record('attach_volume', instance_id, volume_id, device)
        if device in self.fail_attach_for:
            raise UpstreamError(f"Error attaching volume {volume_id}: InvalidParameterValue",
                                operation='attach_volume', volume_id=volume_id)
        self.volumes[volume_id]['Attachments'] = [{'InstanceId': instance_id, 'Device': device}]
        self.volumes[volume_id]['State'] = 'in-use'
        self.instances[instance_id]['BlockDeviceMappings'].append(
            {'DeviceName': device, 'Ebs': {'VolumeId': volume_id, 'Status': 'attached'}})

    def wait_for_volume_attachment(self, volume_id, timeout=3600):
        self._record('wait_for_volume_attachment', volume_id)
        self._maybe_fail_wait('volume_in_use', [volume_id], timeout)

    def cancel(self):
        self._record('cancel')
        self.cancelled.set()

    def _maybe_fail_wait(self, waiter_name, resource_ids, timeout):
        if self.on_wait is not None:
            self.on_wait(waiter_name, resource_ids)
        if self.cancelled.is_set():
            raise WaitCancelled(waiter_name, list(resource_ids))
        if waiter_name in self.timeout_waiters:
            raise WaitTimeout(waiter_name, list(resource_ids), timeout)
        if waiter_name in self.cancel_waiters:
            raise WaitCancelled(waiter_name, list(resource_ids))

    # inspection helpers

    def device_of(self, volume_id: str) -> Optional[str]:
        attachments = self.volumes[volume_id].get('Attachments') or []
        return attachments[0]['Device'] if attachments else None


@pytest.fixture
def fake_aws():
    """The example EC2 account: i-1 with a 20 GiB root and a 100 GiB data volume."""
    fake = FakeAWSClient()
    fake.add_instance('i-1', [('/dev/sda1', 'vol-a', 20), ('/dev/sdb', 'vol-b', 100)], name='web-1')
    fake.add_snapshot('snap-1', 'vol-a', 20, day=1, name='nightly')
    fake.add_snapshot('snap-2', 'vol-b', 100, day=2)
    fake.add_snapshot('snap-3', 'vol-a', 20, state='pending', day=3)
    return fake


@pytest.fixture
def instance(fake_aws):
    """i-1 as the resource directory would return it."""
    return Instance.from_aws(fake_aws.instances['i-1'], fake_aws.volumes)


@pytest.fixture
def snapshots(fake_aws):
    return [Snapshot.from_aws(s) for s in fake_aws.snapshots]


@pytest.fixture
def pick_first():
    """A scripted selector that records what it was offered."""
    offered = []

    def select(attachment: Attachment, candidates: List[Snapshot]) -> Snapshot:
        offered.append((attachment.device, [c.snapshot_id for c in candidates]))
        return candidates[0]

    select.offered = offered
    return select
