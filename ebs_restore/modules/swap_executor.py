import logging
from datetime import datetime
from typing import Dict, List
from .aws_client import AWSClient, DEFAULT_WAIT_TIMEOUT
from .errors import AttachFailed, CorrelationMissing, DetachFailed, RestoreError, WaitCancelled
from .models import Instance, MaterializedVolume, SwapRecord

logger = logging.getLogger(__name__)


class VolumeSwapExecutor:
    """Replaces each original volume with its restored volume on the same device."""

    def __init__(self, aws_client: AWSClient, wait_timeout: int = DEFAULT_WAIT_TIMEOUT):
        self.aws_client = aws_client
        self.wait_timeout = wait_timeout

    def correlate(self, instance: Instance, volumes: List[MaterializedVolume]) -> Dict[str, MaterializedVolume]:
        """Map every EBS device of ``instance`` to the volume tagged for it.

        Raises:
            CorrelationMissing: a device has no tagged volume, or more than one
        """
        volume_ids = [v.volume_id for v in volumes]
        by_device = {}
        for attachment in instance.ebs_attachments:
            tagged = [v for v in volumes if v.device == attachment.device]
            if len(tagged) != 1:
                logger.error(f"{len(tagged)} restored volumes tagged for {attachment.device} "
                             f"on {instance.instance_id}")
                error = CorrelationMissing(instance.instance_id, attachment.device, volume_ids)
                if tagged:
                    error.context['ambiguous'] = [v.volume_id for v in tagged]
                raise error
            by_device[attachment.device] = tagged[0]
        return by_device

    def swap(self, instance: Instance, volumes: List[MaterializedVolume]) -> List[SwapRecord]:
        """Detach each original volume and attach its replacement, in attachment order.

        Every device is correlated before anything is detached. A failure stops
        the swap; devices already swapped stay swapped and are listed on the
        error's ``completed`` attribute.
        """
        start_time = datetime.now()
        by_device = self.correlate(instance, volumes)
        completed = []
        for attachment in instance.ebs_attachments:
            new_volume = by_device[attachment.device]
            self._detach(instance, attachment.device, attachment.volume_id, completed)
            self._attach(instance, attachment.device, new_volume.volume_id, attachment.volume_id, completed)
            completed.append(SwapRecord(attachment.device, attachment.volume_id, new_volume.volume_id))
            logger.info(f"Swapped {attachment.device} on {instance.instance_id}: "
                        f"{attachment.volume_id} -> {new_volume.volume_id}")

        duration = datetime.now() - start_time
        logger.info(f"Completed volume detachment and attachment for {instance.instance_id} "
                    f"in {duration.total_seconds():.2f} seconds")
        return completed

    def _detach(self, instance: Instance, device: str, volume_id: str, completed: List[SwapRecord]) -> None:
        logger.info(f"Detaching volume {volume_id} from {device} on {instance.instance_id}")
        try:
            self.aws_client.detach_volume(volume_id, instance.instance_id, device)
            self.aws_client.wait_for_volumes_available([volume_id], timeout=self.wait_timeout)
        except WaitCancelled as e:
            self._annotate(e, instance, device, volume_id, completed)
            raise
        except RestoreError as e:
            raise DetachFailed(instance.instance_id, device, volume_id, e, completed) from e

    def _attach(self, instance: Instance, device: str, volume_id: str, old_volume_id: str,
                completed: List[SwapRecord]) -> None:
        logger.info(f"Attaching volume {volume_id} to {device} on {instance.instance_id}")
        try:
            self.aws_client.attach_volume(volume_id, instance.instance_id, device)
            self.aws_client.wait_for_volume_attachment(volume_id, timeout=self.wait_timeout)
        except WaitCancelled as e:
            self._annotate(e, instance, device, volume_id, completed)
            raise
        except RestoreError as e:
            raise AttachFailed(instance.instance_id, device, volume_id, e, completed,
                               detached_volume_id=old_volume_id) from e

    @staticmethod
    def _annotate(error: RestoreError, instance: Instance, device: str, volume_id: str,
                  completed: List[SwapRecord]) -> None:
        error.instance_id = instance.instance_id
        error.device = device
        error.volume_id = volume_id
        error.stage = 'swap'
        error.completed = list(completed)
