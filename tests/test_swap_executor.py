"""Tests for swapping restored volumes onto an instance."""
import pytest

from ebs_restore.modules.errors import AttachFailed, CorrelationMissing, DetachFailed
from ebs_restore.modules.materializer import VolumeMaterializer
from ebs_restore.modules.models import MaterializedVolume
from ebs_restore.modules.plan_builder import build_plan
from ebs_restore.modules.swap_executor import VolumeSwapExecutor


@pytest.fixture
def volumes(fake_aws, instance, snapshots, pick_first):
    plan = build_plan(instance, snapshots, pick_first)
    volumes = VolumeMaterializer(fake_aws).materialize(plan)
    fake_aws.calls.clear()
    return volumes


def test_new_volumes_take_the_same_devices(fake_aws, instance, volumes):
    records = VolumeSwapExecutor(fake_aws).swap(instance, volumes)

    for volume in volumes:
        assert fake_aws.device_of(volume.volume_id) == volume.device
    assert fake_aws.device_of('vol-a') is None
    assert fake_aws.device_of('vol-b') is None
    assert [(r.device, r.old_volume_id) for r in records] == [('/dev/sda1', 'vol-a'), ('/dev/sdb', 'vol-b')]


def test_swaps_follow_attachment_order(fake_aws, instance, volumes):
    by_device = {v.device: v.volume_id for v in volumes}

    VolumeSwapExecutor(fake_aws).swap(instance, list(reversed(volumes)))

    assert fake_aws.mutating_calls() == [
        ('detach_volume', 'i-1', '/dev/sda1', 'vol-a'),
        ('attach_volume', 'i-1', by_device['/dev/sda1'], '/dev/sda1'),
        ('detach_volume', 'i-1', '/dev/sdb', 'vol-b'),
        ('attach_volume', 'i-1', by_device['/dev/sdb'], '/dev/sdb'),
    ]


def test_detach_is_awaited_before_attach(fake_aws, instance, volumes):
    VolumeSwapExecutor(fake_aws).swap(instance, volumes)

    assert fake_aws.call_names()[:4] == [
        'detach_volume', 'wait_for_volumes_available', 'attach_volume', 'wait_for_volume_attachment']


def test_missing_correlation_fails_before_any_detach(fake_aws, instance, volumes):
    only_root = [v for v in volumes if v.device == '/dev/sda1']

    with pytest.raises(CorrelationMissing) as exc_info:
        VolumeSwapExecutor(fake_aws).swap(instance, only_root)

    assert exc_info.value.device == '/dev/sdb'
    assert fake_aws.mutating_calls() == []


def test_ambiguous_correlation_is_rejected(fake_aws, instance, volumes):
    duplicate = MaterializedVolume('vol-dup', '/dev/sda1', 20, 'available')

    with pytest.raises(CorrelationMissing) as exc_info:
        VolumeSwapExecutor(fake_aws).swap(instance, volumes + [duplicate])

    assert 'vol-dup' in exc_info.value.context['ambiguous']
    assert fake_aws.mutating_calls() == []


def test_detach_failure_stops_and_keeps_earlier_swaps(fake_aws, instance, volumes):
    fake_aws.fail_detach_for.add('/dev/sdb')

    with pytest.raises(DetachFailed) as exc_info:
        VolumeSwapExecutor(fake_aws).swap(instance, volumes)

    error = exc_info.value
    assert error.device == '/dev/sdb'
    assert error.volume_id == 'vol-b'
    assert [r.device for r in error.completed] == ['/dev/sda1']
    root = next(v for v in volumes if v.device == '/dev/sda1')
    assert fake_aws.device_of(root.volume_id) == '/dev/sda1'
    assert [c[0] for c in fake_aws.mutating_calls()][-1] == 'detach_volume'


def test_attach_failure_names_the_detached_volume(fake_aws, instance, volumes):
    fake_aws.fail_attach_for.add('/dev/sda1')

    with pytest.raises(AttachFailed) as exc_info:
        VolumeSwapExecutor(fake_aws).swap(instance, volumes)

    error = exc_info.value
    assert error.device == '/dev/sda1'
    assert error.detached_volume_id == 'vol-a'
    assert error.completed == []
    assert error.stage == 'swap'
