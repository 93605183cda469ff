import boto3
import logging
import math
import threading
from typing import Dict, List, Optional
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, WaiterError
from .errors import NotFound, UpstreamError, WaitCancelled, WaitTimeout

logger = logging.getLogger(__name__)

DEFAULT_WAIT_TIMEOUT = 3600
DEFAULT_WAIT_DELAY = 15

INSTANCE_WAITERS = {
    'stopped': 'instance_stopped',
    'running': 'instance_running',
    'ok': 'instance_status_ok',
}


class AWSClient:
    def __init__(self, profile_name: Optional[str] = None, region: Optional[str] = None,
                 endpoint_url: Optional[str] = None, verify_ssl: bool = True,
                 wait_delay: int = DEFAULT_WAIT_DELAY):
        """Initialize AWS client with optional profile, region and custom endpoint."""
        try:
            self.session = boto3.Session(profile_name=profile_name, region_name=region)
            if not verify_ssl:
                logger.warning("SSL certificate verification is DISABLED for EC2 calls")
            if endpoint_url:
                logger.info(f"Using custom EC2 endpoint: {endpoint_url}")
            self.ec2_client = self.session.client(
                'ec2',
                endpoint_url=endpoint_url,
                verify=verify_ssl,
                config=BotoConfig(retries={'mode': 'standard'}),
            )
            self.wait_delay = wait_delay
            self._cancelled = threading.Event()
            logger.info(f"Initialized AWS client with profile: {profile_name}, region: {region}")
        except BotoCoreError as e:
            logger.error(f"Error initializing AWS client: {str(e)}")
            raise UpstreamError(f"Error initializing AWS client: {e}", operation='session', cause=e) from e

    def describe_instances(self, instance_ids: Optional[List[str]] = None,
                           names: Optional[List[str]] = None) -> List[Dict]:
        """Describe instances by ID or by Name tag, flattened across reservations."""
        filters = []
        if instance_ids:
            filters.append({'Name': 'instance-id', 'Values': list(instance_ids)})
        if names:
            filters.append({'Name': 'tag:Name', 'Values': list(names)})
        try:
            instances = []
            paginator = self.ec2_client.get_paginator('describe_instances')
            for page in paginator.paginate(Filters=filters):
                for reservation in page.get('Reservations', []):
                    instances.extend(reservation.get('Instances', []))
            return instances
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error describing instances {filters}: {str(e)}")
            raise UpstreamError(f"Failed to describe instances: {e}",
                                operation='describe_instances', cause=e) from e

    def get_instance_by_id(self, instance_id: str) -> Dict:
        """Get instance details by ID."""
        instances = self.describe_instances(instance_ids=[instance_id])
        if not instances:
            raise NotFound([instance_id])
        return instances[0]

    def get_instance_state(self, instance_id: str) -> str:
        return self.get_instance_by_id(instance_id)['State']['Name']

    def describe_volumes(self, volume_ids: List[str]) -> List[Dict]:
        """Describe volumes by ID."""
        if not volume_ids:
            return []
        try:
            volumes = []
            paginator = self.ec2_client.get_paginator('describe_volumes')
            for page in paginator.paginate(VolumeIds=list(volume_ids)):
                volumes.extend(page.get('Volumes', []))
            return volumes
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error describing volumes {', '.join(volume_ids)}: {str(e)}")
            raise UpstreamError(f"Failed to describe volumes {', '.join(volume_ids)}: {e}",
                                operation='describe_volumes', cause=e) from e

    def describe_snapshots(self, volume_ids: List[str]) -> List[Dict]:
        """Get all snapshots taken from any of the given volumes."""
        if not volume_ids:
            return []
        try:
            snapshots = []
            paginator = self.ec2_client.get_paginator('describe_snapshots')
            for page in paginator.paginate(Filters=[{'Name': 'volume-id', 'Values': list(volume_ids)}]):
                snapshots.extend(page.get('Snapshots', []))
            return snapshots
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error describing snapshots for volumes {', '.join(volume_ids)}: {str(e)}")
            raise UpstreamError(f"Failed to describe snapshots: {e}",
                                operation='describe_snapshots', cause=e) from e

    def stop_instance(self, instance_id: str) -> None:
        """Stop an EC2 instance."""
        try:
            self.ec2_client.stop_instances(InstanceIds=[instance_id])
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error stopping instance {instance_id}: {str(e)}")
            raise UpstreamError(f"Error stopping instance {instance_id}: {e}", operation='stop_instances',
                                instance_id=instance_id, cause=e) from e

    def start_instance(self, instance_id: str) -> None:
        """Start an EC2 instance."""
        try:
            self.ec2_client.start_instances(InstanceIds=[instance_id])
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error starting instance {instance_id}: {str(e)}")
            raise UpstreamError(f"Error starting instance {instance_id}: {e}", operation='start_instances',
                                instance_id=instance_id, cause=e) from e

    def create_volume(self, snapshot_id: str, availability_zone: str,
                      volume_type: Optional[str] = None, tags: Optional[List[Dict]] = None) -> str:
        """Request a new volume from a snapshot and return its ID without waiting."""
        params = {
            'SnapshotId': snapshot_id,
            'AvailabilityZone': availability_zone,
        }
        if volume_type:
            params['VolumeType'] = volume_type
        if tags:
            params['TagSpecifications'] = [{'ResourceType': 'volume', 'Tags': tags}]
        try:
            response = self.ec2_client.create_volume(**params)
            return response['VolumeId']
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error creating volume from snapshot {snapshot_id}: {str(e)}")
            raise UpstreamError(f"Error creating volume from snapshot {snapshot_id}: {e}",
                                operation='create_volume', snapshot_id=snapshot_id, cause=e) from e

    def detach_volume(self, volume_id: str, instance_id: str, device: str) -> None:
        """Detach a volume from an instance."""
        try:
            self.ec2_client.detach_volume(VolumeId=volume_id, InstanceId=instance_id, Device=device)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error detaching volume {volume_id} from {device} on {instance_id}: {str(e)}")
            raise UpstreamError(f"Error detaching volume {volume_id}: {e}", operation='detach_volume',
                                instance_id=instance_id, device=device, volume_id=volume_id, cause=e) from e

    def attach_volume(self, volume_id: str, instance_id: str, device: str) -> None:
        """Attach a volume to an instance."""
        try:
            self.ec2_client.attach_volume(VolumeId=volume_id, InstanceId=instance_id, Device=device)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error attaching volume {volume_id} to instance {instance_id}: {str(e)}")
            raise UpstreamError(f"Error attaching volume {volume_id}: {e}", operation='attach_volume',
                                instance_id=instance_id, device=device, volume_id=volume_id, cause=e) from e

    def wait_for_instance_state(self, instance_id: str, desired_state: str,
                                timeout: int = DEFAULT_WAIT_TIMEOUT) -> None:
        """Wait for an instance to reach a desired state.

        Args:
            instance_id: The ID of the instance to check
            desired_state: 'stopped' or 'running'; 'ok' waits for passing status checks
            timeout: Maximum time to wait in seconds (default: 3600)
        """
        self._wait(INSTANCE_WAITERS[desired_state], 'InstanceIds', [instance_id], timeout)

    def wait_for_instance_status_ok(self, instance_id: str, timeout: int = DEFAULT_WAIT_TIMEOUT) -> None:
        """Wait for a started instance to pass its system and instance status checks."""
        self.wait_for_instance_state(instance_id, 'ok', timeout=timeout)

    def wait_for_volumes_available(self, volume_ids: List[str], timeout: int = DEFAULT_WAIT_TIMEOUT) -> None:
        """Wait for all volumes to be available (created, or detached)."""
        self._wait('volume_available', 'VolumeIds', volume_ids, timeout)

    def wait_for_volume_attachment(self, volume_id: str, timeout: int = DEFAULT_WAIT_TIMEOUT) -> None:
        """Wait for a volume to be attached to an instance."""
        self._wait('volume_in_use', 'VolumeIds', [volume_id], timeout)

    def cancel(self) -> None:
        """Make every wait in progress, and every later one, raise ``WaitCancelled``."""
        logger.warning("Cancelling EC2 waits")
        self._cancelled.set()

    def _wait(self, waiter_name: str, id_param: str, resource_ids: List[str], timeout: int) -> None:
        """Poll with a botocore waiter, bounded by ``timeout`` seconds.

        The waiter runs one attempt at a time so a ``cancel()`` from another
        thread is noticed within one delay.

        Raises:
            WaitTimeout: the resources did not reach the state in time
            WaitCancelled: the wait was interrupted or cancelled
            UpstreamError: the waiter hit a failure state or the API call failed
        """
        delay = self.wait_delay
        max_attempts = max(1, math.ceil(timeout / max(delay, 1)))
        logger.info(f"Waiting for {waiter_name} on {', '.join(resource_ids)} (timeout {timeout}s)")
        try:
            waiter = self.ec2_client.get_waiter(waiter_name)
            for attempt in range(1, max_attempts + 1):
                if self._cancelled.is_set():
                    raise self._cancelled_error(waiter_name, resource_ids)
                try:
                    waiter.wait(**{id_param: list(resource_ids)},
                                WaiterConfig={'Delay': delay, 'MaxAttempts': 1})
                    break
                except WaiterError as e:
                    if 'Max attempts exceeded' not in str(e):
                        raise
                    if attempt == max_attempts:
                        logger.error(f"Timed out waiting for {waiter_name} on {', '.join(resource_ids)}")
                        raise WaitTimeout(waiter_name, resource_ids, timeout) from e
                if self._cancelled.wait(delay):
                    raise self._cancelled_error(waiter_name, resource_ids)
        except WaiterError as e:
            logger.error(f"Error waiting for {waiter_name} on {', '.join(resource_ids)}: {str(e)}")
            raise UpstreamError(f"Error waiting for {waiter_name} on {', '.join(resource_ids)}: {e}",
                                operation=waiter_name, cause=e) from e
        except KeyboardInterrupt as e:
            raise self._cancelled_error(waiter_name, resource_ids) from e
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error waiting for {waiter_name} on {', '.join(resource_ids)}: {str(e)}")
            raise UpstreamError(f"Error waiting for {waiter_name}: {e}", operation=waiter_name, cause=e) from e
        logger.info(f"{', '.join(resource_ids)} reached {waiter_name}")

    @staticmethod
    def _cancelled_error(waiter_name: str, resource_ids: List[str]) -> WaitCancelled:
        logger.error(f"Wait for {waiter_name} on {', '.join(resource_ids)} was cancelled")
        return WaitCancelled(waiter_name, resource_ids)
