#!/usr/bin/env python3
"""
EBS Snapshot Restore Tool

Restores the EBS volumes attached to EC2 instances from chosen snapshots:
new volumes are created from the snapshots and swapped in on the same devices.
"""

from ebs_restore.modules.cli import cli

if __name__ == '__main__':
    cli()
