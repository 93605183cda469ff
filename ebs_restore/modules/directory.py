"""Resolve instance IDs or Name tags to instance descriptions."""

import logging
import re
from typing import Iterable, List, Optional, Tuple
from .aws_client import AWSClient
from .errors import NotFound
from .models import Instance

logger = logging.getLogger(__name__)

INSTANCE_ID_PATTERN = re.compile(r'^i-[0-9a-f]{8}([0-9a-f]{9})?$')


def split_identifiers(identifiers: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Split a mixed list into instance IDs and Name tag values."""
    ids, names = [], []
    for identifier in identifiers:
        identifier = identifier.strip()
        if not identifier:
            continue
        if INSTANCE_ID_PATTERN.match(identifier):
            ids.append(identifier)
        else:
            names.append(identifier)
    return ids, names


def read_instance_file(path: str) -> List[str]:
    """Read instance IDs or names from a file, one per line.

    Blank lines and lines starting with ``#`` are ignored.
    """
    with open(path, 'r') as f:
        return [line.strip() for line in f if line.strip() and not line.strip().startswith('#')]


def find_instances(aws_client: AWSClient, instance_ids: Optional[List[str]] = None,
                   names: Optional[List[str]] = None, require_match: bool = True) -> List[Instance]:
    """Find instances by ID and/or Name tag.

    Every match is returned, in the order EC2 lists them, with each EBS
    attachment's volume size and type filled in from describe_volumes.

    Raises:
        NotFound: if nothing matched and ``require_match`` is set
    """
    instance_ids = list(instance_ids or [])
    names = list(names or [])
    raw_instances = []
    seen = set()
    # EC2 ANDs filters, so IDs and names are looked up separately
    lookups = []
    if instance_ids:
        lookups.append({'instance_ids': instance_ids})
    if names:
        lookups.append({'names': names})
    for lookup in lookups:
        for raw in aws_client.describe_instances(**lookup):
            if raw['InstanceId'] not in seen:
                seen.add(raw['InstanceId'])
                raw_instances.append(raw)

    if not raw_instances:
        if require_match:
            raise NotFound(instance_ids + names)
        return []

    volume_ids = [
        mapping['Ebs']['VolumeId']
        for raw in raw_instances
        for mapping in raw.get('BlockDeviceMappings', [])
        if 'Ebs' in mapping and mapping['Ebs'].get('VolumeId')
    ]
    volumes = {v['VolumeId']: v for v in aws_client.describe_volumes(volume_ids)}

    instances = [Instance.from_aws(raw, volumes) for raw in raw_instances]
    for instance in instances:
        logger.info(f"Found instance {instance.display_name} ({instance.state}) with "
                    f"{len(instance.ebs_attachments)} EBS volumes")
    return instances
