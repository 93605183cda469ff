import logging
from typing import List
from .aws_client import AWSClient
from .models import Instance, Snapshot

logger = logging.getLogger(__name__)


def snapshots_for_instance(aws_client: AWSClient, instance: Instance) -> List[Snapshot]:
    """Get every snapshot of the instance's EBS volumes, in any state.

    Devices without an EBS volume are skipped.
    """
    volume_ids = instance.volume_ids
    skipped = [a.device for a in instance.attachments if not a.is_ebs]
    if skipped:
        logger.info(f"Skipping non-EBS devices on {instance.instance_id}: {', '.join(skipped)}")
    if not volume_ids:
        return []

    snapshots = [Snapshot.from_aws(s) for s in aws_client.describe_snapshots(volume_ids)]
    logger.info(f"Found {len(snapshots)} snapshots for volumes {', '.join(volume_ids)} "
                f"on instance {instance.instance_id}")
    return snapshots
