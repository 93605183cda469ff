import logging
import json
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from pathlib import Path
from .aws_client import AWSClient, DEFAULT_WAIT_TIMEOUT
from .concurrency import FanOutError, concurrent_map
from .directory import find_instances
from .errors import InstanceStateError, RestoreCancelled, RestoreError, UpstreamError
from .materializer import DEFAULT_TAG_PREFIX, VolumeMaterializer
from .models import Instance, LifecycleState, RestoreFlags, RestorePlan, RestoreResult, Snapshot
from .plan_builder import SelectFn, build_plan
from .snapshot_catalog import snapshots_for_instance
from .swap_executor import VolumeSwapExecutor

logger = logging.getLogger(__name__)


class RestoreManager:
    def __init__(self, aws_client: AWSClient, report_dir: Optional[str] = "reports",
                 wait_timeout: int = DEFAULT_WAIT_TIMEOUT, max_workers: Optional[int] = None,
                 tag_prefix: str = DEFAULT_TAG_PREFIX):
        """Initialize the restore manager.

        Args:
            aws_client: EC2 control plane client
            report_dir: Where JSON restore reports go; None disables reports
            wait_timeout: Upper bound in seconds for every wait on EC2 state
            max_workers: Fan-out width for volume creation and instance runs
            tag_prefix: Prefix of the tags that correlate new volumes to devices
        """
        self.aws_client = aws_client
        self.report_dir = Path(report_dir) if report_dir else None
        self.wait_timeout = wait_timeout
        self.max_workers = max_workers
        self.materializer = VolumeMaterializer(aws_client, tag_prefix=tag_prefix,
                                               wait_timeout=wait_timeout, max_workers=max_workers)
        self.swap_executor = VolumeSwapExecutor(aws_client, wait_timeout=wait_timeout)

    def find_instances(self, instance_ids: Optional[List[str]] = None,
                       names: Optional[List[str]] = None) -> List[Instance]:
        return find_instances(self.aws_client, instance_ids=instance_ids, names=names)

    def get_snapshots(self, instance: Instance) -> List[Snapshot]:
        return snapshots_for_instance(self.aws_client, instance)

    def plan_restore(self, instance: Instance, select_fn: SelectFn) -> RestorePlan:
        """Fetch the instance's snapshots and resolve one per device."""
        snapshots = self.get_snapshots(instance)
        plan = build_plan(instance, snapshots, select_fn)
        logger.info(f"Planned restore of {len(plan.entries)} devices on {instance.instance_id}: "
                    f"{', '.join(f'{e.device}={e.snapshot_id}' for e in plan.entries)}")
        return plan

    def execute_restore(self, instance: Instance, plan: RestorePlan, flags: RestoreFlags) -> RestoreResult:
        """Run ``plan`` against ``instance``.

        Without ``flags.execute`` nothing is changed and the planned result is
        returned. Otherwise the instance is stopped if requested, new volumes
        are created, swapped in, and the instance is started if requested.

        Raises:
            RestoreError: on the first failing stage; nothing is rolled back
        """
        result = RestoreResult(instance_id=instance.instance_id, instance_name=instance.name,
                               plan=plan, flags=flags)
        self._execute(instance, plan, flags, result)
        return result

    def _execute(self, instance: Instance, plan: RestorePlan, flags: RestoreFlags,
                 result: RestoreResult) -> None:
        if not flags.execute:
            logger.info(f"Dry run: not modifying instance {instance.instance_id}")
            result.finished_at = datetime.now(timezone.utc)
            return

        stage = 'stop'
        try:
            self._stop(instance, flags, result)
            stage = 'materialize'
            result.volumes = self.materializer.materialize(plan)
            stage = 'swap'
            self._set_state(result, LifecycleState.SWAPPING)
            result.swaps = self.swap_executor.swap(instance, result.volumes)
            self._set_state(result, LifecycleState.SWAPPED)
            if flags.start:
                stage = 'start'
                self._start(instance, result)
        except RestoreError as e:
            if e.stage is None:
                e.stage = stage
            if e.instance_id is None:
                e.instance_id = instance.instance_id
            completed = getattr(e, 'completed', None)
            if completed:
                result.swaps = list(completed)
            result.error = e
            self._set_state(result, LifecycleState.FAILED)
            logger.error(f"Restore of {instance.instance_id} failed during {e.stage}: {e}")
            raise
        except Exception as e:
            error = UpstreamError(f"Unexpected error during {stage}: {e}", instance_id=instance.instance_id,
                                  stage=stage, cause=e)
            result.error = error
            self._set_state(result, LifecycleState.FAILED)
            logger.error(f"Restore of {instance.instance_id} failed during {stage}: {type(e).__name__}: {e}")
            raise error from e
        finally:
            result.finished_at = datetime.now(timezone.utc)
            self._write_report(result)

    def _stop(self, instance: Instance, flags: RestoreFlags, result: RestoreResult) -> None:
        state = self.aws_client.get_instance_state(instance.instance_id)
        logger.info(f"Instance {instance.instance_id} current state: {state}")
        if state in ('running', 'stopping'):
            if not flags.stop:
                raise InstanceStateError(instance.instance_id, state,
                                         "volumes can only be swapped on a stopped instance; request a stop")
            self._set_state(result, LifecycleState.STOPPING)
            logger.info(f"Stopping instance {instance.instance_id}")
            self.aws_client.stop_instance(instance.instance_id)
            self.aws_client.wait_for_instance_state(instance.instance_id, 'stopped', timeout=self.wait_timeout)
            logger.info(f"Instance {instance.instance_id} stopped successfully")
        elif state != 'stopped':
            raise InstanceStateError(instance.instance_id, state, "instance must be either running or stopped")
        self._set_state(result, LifecycleState.STOPPED)

    def _start(self, instance: Instance, result: RestoreResult) -> None:
        self._set_state(result, LifecycleState.STARTING)
        logger.info(f"Starting instance {instance.instance_id}")
        self.aws_client.start_instance(instance.instance_id)
        self.aws_client.wait_for_instance_state(instance.instance_id, 'running', timeout=self.wait_timeout)
        self.aws_client.wait_for_instance_status_ok(instance.instance_id, timeout=self.wait_timeout)
        self._set_state(result, LifecycleState.RUNNING)
        logger.info(f"Instance {instance.instance_id} started successfully")

    @staticmethod
    def _set_state(result: RestoreResult, state: LifecycleState) -> None:
        logger.debug(f"Instance {result.instance_id}: {result.state.value} -> {state.value}")
        result.state = state

    def plan_instances(self, instances: List[Instance], select_fn: SelectFn,
                       flags: RestoreFlags) -> Tuple[List[Tuple[Instance, RestorePlan]], List[RestoreResult]]:
        """Plan every instance in turn.

        Planning is sequential because ``select_fn`` may prompt the operator.

        Returns:
            (instance, plan) pairs that planned cleanly, and failed results for the rest
        """
        planned = []
        failed = []
        for instance in instances:
            try:
                planned.append((instance, self.plan_restore(instance, select_fn)))
            except RestoreError as e:
                logger.error(f"Could not plan restore of {instance.instance_id}: {e}")
                failed.append(RestoreResult(
                    instance_id=instance.instance_id, instance_name=instance.name, flags=flags,
                    state=LifecycleState.FAILED, error=e, finished_at=datetime.now(timezone.utc),
                ))
        return planned, failed

    def execute_plans(self, planned: List[Tuple[Instance, RestorePlan]],
                      flags: RestoreFlags) -> List[RestoreResult]:
        """Execute plans concurrently; each instance succeeds or fails on its own."""
        def run(item: Tuple[Instance, RestorePlan]) -> RestoreResult:
            instance, plan = item
            result = RestoreResult(instance_id=instance.instance_id, instance_name=instance.name,
                                   plan=plan, flags=flags)
            try:
                self._execute(instance, plan, flags, result)
            except RestoreError:
                pass  # recorded on result by _execute
            return result

        try:
            return concurrent_map(run, planned, self.max_workers, on_interrupt=self.aws_client.cancel)
        except FanOutError as e:
            # only calls cancelled before they started fail here
            results = {item[0].instance_id: result for item, result in e.succeeded}
            for (instance, plan), _ in e.failed:
                logger.warning(f"Restore of {instance.instance_id} cancelled before it started")
                results[instance.instance_id] = RestoreResult(
                    instance_id=instance.instance_id, instance_name=instance.name, plan=plan, flags=flags,
                    state=LifecycleState.FAILED, error=RestoreCancelled(instance.instance_id),
                    finished_at=datetime.now(timezone.utc),
                )
            return [results[instance.instance_id] for instance, _ in planned]

    def restore_instances(self, instances: List[Instance], select_fn: SelectFn,
                          flags: RestoreFlags) -> List[RestoreResult]:
        """Plan every instance, then execute the plans concurrently.

        Returns results in the order of ``instances``.
        """
        planned, failed = self.plan_instances(instances, select_fn, flags)
        results = {r.instance_id: r for r in failed + self.execute_plans(planned, flags)}
        return [results[instance.instance_id] for instance in instances]

    def generate_restore_report(self, result: RestoreResult) -> str:
        """Write a JSON report of one instance restore and return its path."""
        self.report_dir.mkdir(parents=True, exist_ok=True)
        report_file = self.report_dir / (
            f"restore_report_{result.instance_id}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
        )
        with open(report_file, 'w') as f:
            json.dump(result.to_dict(), f, indent=2, default=str)
        logger.info(f"Restore report for {result.instance_id} written to {report_file}")
        return str(report_file)

    def _write_report(self, result: RestoreResult) -> None:
        if self.report_dir is None:
            return
        try:
            result.report_file = self.generate_restore_report(result)
        except OSError as e:
            logger.error(f"Error generating restore report for {result.instance_id}: {str(e)}")
