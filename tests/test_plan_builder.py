"""Tests for candidate filtering and restore plan construction."""
import random
from datetime import datetime, timezone

import pytest

from ebs_restore.modules.errors import NoCandidateSnapshot, SelectionAborted
from ebs_restore.modules.models import Attachment, Instance, Snapshot
from ebs_restore.modules.plan_builder import build_plan, candidates, newest_first, select_latest


def snap(snapshot_id, size, state='completed', volume_id='vol-a', day=1):
    return Snapshot(snapshot_id=snapshot_id, volume_id=volume_id, size=size, state=state,
                    start_time=datetime(2024, 1, day, tzinfo=timezone.utc))


def test_candidates_are_completed_and_same_size():
    pool = [
        snap('s1', 20),
        snap('s2', 20, state='pending'),
        snap('s3', 100),
        snap('s4', 20, state='error'),
        snap('s5', 20, volume_id='vol-other'),
    ]
    assert [s.snapshot_id for s in candidates(pool, 20)] == ['s1', 's5']
    assert [s.snapshot_id for s in candidates(pool, 100)] == ['s3']
    assert candidates(pool, 8) == []


def test_candidates_do_not_depend_on_input_order():
    pool = [snap(f's{i}', size, state) for i, (size, state) in enumerate(
        [(20, 'completed'), (20, 'pending'), (100, 'completed'), (20, 'completed'), (8, 'completed')])]
    expected = {s.snapshot_id for s in candidates(pool, 20)}
    shuffled = list(pool)
    random.Random(7).shuffle(shuffled)
    assert {s.snapshot_id for s in candidates(shuffled, 20)} == expected


def test_candidates_with_unknown_volume_size():
    assert candidates([snap('s1', 20)], None) == []


def test_build_plan_has_one_entry_per_device(instance, snapshots, pick_first):
    plan = build_plan(instance, snapshots, pick_first)

    assert plan.instance_id == 'i-1'
    assert plan.availability_zone == 'us-east-1a'
    assert plan.devices == ['/dev/sda1', '/dev/sdb']
    assert plan.snapshots == {'/dev/sda1': 'snap-1', '/dev/sdb': 'snap-2'}
    assert plan.original_volumes == {'/dev/sda1': 'vol-a', '/dev/sdb': 'vol-b'}
    assert pick_first.offered == [('/dev/sda1', ['snap-1']), ('/dev/sdb', ['snap-2'])]


def test_build_plan_fails_fast_without_candidates(snapshots):
    instance = Instance('i-9', None, 'stopped', 'us-east-1a', (
        Attachment('/dev/sda1', 'vol-x', 8),
        Attachment('/dev/sdb', 'vol-b', 100),
    ))
    calls = []

    with pytest.raises(NoCandidateSnapshot) as exc_info:
        build_plan(instance, snapshots, lambda a, c: calls.append(a) or c[0])

    assert exc_info.value.device == '/dev/sda1'
    assert exc_info.value.instance_id == 'i-9'
    assert exc_info.value.volume_size == 8
    assert calls == []


def test_build_plan_all_sizes_mismatch():
    instance = Instance('i-1', None, 'running', 'us-east-1a', (Attachment('/dev/sda1', 'vol-a', 8),))
    offered = []
    with pytest.raises(NoCandidateSnapshot):
        build_plan(instance, [snap('s1', 20), snap('s2', 20)], lambda a, c: offered.append(c))
    assert offered == []


def test_build_plan_abort_stops_whole_instance(instance, snapshots):
    seen = []

    def abort_on_data(attachment, device_candidates):
        seen.append(attachment.device)
        return None if attachment.device == '/dev/sdb' else device_candidates[0]

    with pytest.raises(SelectionAborted) as exc_info:
        build_plan(instance, snapshots, abort_on_data)

    assert exc_info.value.device == '/dev/sdb'
    assert seen == ['/dev/sda1', '/dev/sdb']


def test_build_plan_rejects_selection_outside_candidates(instance, snapshots):
    pending = next(s for s in snapshots if s.snapshot_id == 'snap-3')

    with pytest.raises(SelectionAborted, match='snap-3 is not a candidate'):
        build_plan(instance, snapshots, lambda a, c: pending)


def test_build_plan_skips_devices_without_ebs(snapshots, pick_first):
    instance = Instance('i-2', None, 'stopped', 'us-east-1a', (
        Attachment('/dev/sda1', 'vol-a', 20),
        Attachment('/dev/sdc', None),
    ))

    plan = build_plan(instance, snapshots, pick_first)

    assert plan.devices == ['/dev/sda1']


def test_build_plan_allows_snapshot_of_another_volume(pick_first):
    instance = Instance('i-1', None, 'stopped', 'us-east-1a', (Attachment('/dev/sda1', 'vol-a', 20),))

    plan = build_plan(instance, [snap('s-other', 20, volume_id='vol-zzz')], pick_first)

    assert plan.entry_for('/dev/sda1').snapshot_id == 's-other'


def test_select_latest_picks_newest():
    attachment = Attachment('/dev/sda1', 'vol-a', 20)
    chosen = select_latest(attachment, [snap('old', 20, day=1), snap('new', 20, day=5), snap('mid', 20, day=3)])
    assert chosen.snapshot_id == 'new'


def test_select_latest_prefers_own_volume_on_tie():
    attachment = Attachment('/dev/sda1', 'vol-a', 20)
    chosen = select_latest(attachment, [snap('foreign', 20, volume_id='vol-z', day=2),
                                        snap('own', 20, volume_id='vol-a', day=2)])
    assert chosen.snapshot_id == 'own'


def test_select_latest_with_no_candidates():
    assert select_latest(Attachment('/dev/sda1', 'vol-a', 20), []) is None


def test_newest_first_handles_missing_start_time():
    undated = Snapshot('undated', 'vol-a', 20, 'completed')
    ordered = newest_first([undated, snap('dated', 20, day=2)])
    assert [s.snapshot_id for s in ordered] == ['dated', 'undated']
