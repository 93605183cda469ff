import logging
from datetime import datetime
from typing import Dict, List, Optional
from .aws_client import AWSClient, DEFAULT_WAIT_TIMEOUT
from .concurrency import FanOutError, concurrent_map
from .errors import PartialCreateFailure, UpstreamError, VolumeNotAvailable, WaitCancelled, WaitTimeout
from .models import MaterializedVolume, PlanEntry, RestorePlan

logger = logging.getLogger(__name__)

DEFAULT_TAG_PREFIX = 'EbsRestore'


class VolumeMaterializer:
    """Creates one new volume per plan entry and waits for all of them."""

    def __init__(self, aws_client: AWSClient, tag_prefix: str = DEFAULT_TAG_PREFIX,
                 wait_timeout: int = DEFAULT_WAIT_TIMEOUT, max_workers: Optional[int] = None):
        self.aws_client = aws_client
        self.tag_prefix = tag_prefix
        self.wait_timeout = wait_timeout
        self.max_workers = max_workers

    @property
    def device_tag(self) -> str:
        return f"{self.tag_prefix}Device"

    def volume_tags(self, plan: RestorePlan, entry: PlanEntry) -> List[Dict]:
        return [
            {'Key': self.device_tag, 'Value': entry.device},
            {'Key': f"{self.tag_prefix}SourceSnapshot", 'Value': entry.snapshot_id},
            {'Key': f"{self.tag_prefix}InstanceId", 'Value': plan.instance_id},
            {'Key': f"{self.tag_prefix}OriginalVolume", 'Value': entry.volume_id},
            {'Key': 'Name', 'Value': f"restore-{plan.instance_id}-{entry.device}"},
        ]

    def _create(self, plan: RestorePlan, entry: PlanEntry) -> str:
        logger.info(f"Creating volume from snapshot {entry.snapshot_id} for {entry.device} "
                    f"on instance {plan.instance_id}")
        volume_id = self.aws_client.create_volume(
            entry.snapshot_id,
            plan.availability_zone,
            volume_type=entry.volume_type,
            tags=self.volume_tags(plan, entry),
        )
        logger.info(f"Requested volume {volume_id} from snapshot {entry.snapshot_id} for {entry.device}")
        return volume_id

    def materialize(self, plan: RestorePlan) -> List[MaterializedVolume]:
        """Create and await a new volume for every entry of ``plan``.

        Raises:
            PartialCreateFailure: any create request failed; nothing was attached
            VolumeNotAvailable: the volumes did not become available in time
            WaitCancelled: the wait was interrupted
        """
        start_time = datetime.now()
        try:
            volume_ids = concurrent_map(lambda entry: self._create(plan, entry), plan.entries, self.max_workers)
        except FanOutError as e:
            failed_entry = e.item
            succeeded = [volume_id for _, volume_id in e.succeeded]
            logger.error(f"Volume creation failed for {failed_entry.device} on {plan.instance_id}; "
                         f"created volumes left unattached: {', '.join(succeeded) or 'none'}")
            raise PartialCreateFailure(plan.instance_id, succeeded, e.error,
                                       snapshot_id=failed_entry.snapshot_id,
                                       device=failed_entry.device) from e.error

        try:
            self.aws_client.wait_for_volumes_available(volume_ids, timeout=self.wait_timeout)
        except WaitCancelled as e:
            e.instance_id = plan.instance_id
            e.stage = 'materialize'
            raise
        except (WaitTimeout, UpstreamError) as e:
            raise VolumeNotAvailable(plan.instance_id, volume_ids, e) from e

        volumes = [MaterializedVolume.from_aws(v, self.device_tag)
                   for v in self.aws_client.describe_volumes(volume_ids)]
        duration = datetime.now() - start_time
        logger.info(f"Created {len(volumes)} volumes for instance {plan.instance_id} "
                    f"in {duration.total_seconds():.2f} seconds")
        return volumes
