import sys
import click
import logging
from typing import Dict, List, Optional, Tuple
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.prompt import Prompt, Confirm
from .aws_client import AWSClient
from .config import ConfigError, load_config, setup_logging
from .directory import read_instance_file, split_identifiers
from .display import (display_candidates, display_instance_snapshots, display_instances,
                      display_plan, display_results, snapshot_label)
from .errors import RestoreError
from .models import Attachment, Instance, RestoreFlags, Snapshot
from .plan_builder import newest_first, select_latest
from .restore_manager import RestoreManager
from datetime import datetime

console = Console()
logger = logging.getLogger(__name__)


def handle_quit_input(user_input: str) -> bool:
    """Check if user wants to quit."""
    return user_input.lower() in ['q', 'quit']


def display_progress(description: str, duration: float):
    """Display progress with duration."""
    console.print(f"[green]✓[/green] {description} ({duration:.2f} seconds)")


def prompt_for_snapshot(attachment: Attachment, candidates: List[Snapshot]) -> Optional[Snapshot]:
    """Ask the operator to pick one snapshot for a device; None means quit."""
    ordered = newest_first(candidates)
    display_candidates(attachment, ordered)
    console.print("\n[bold]Enter 'q' or 'quit' at any prompt to exit gracefully[/bold]")
    selection = Prompt.ask(
        f"Select snapshot to restore to {attachment.device}",
        choices=[str(i) for i in range(1, len(ordered) + 1)] + ['q', 'quit'],
        default="1",
    )
    if handle_quit_input(selection):
        return None
    return ordered[int(selection) - 1]


def latest_with_echo(attachment: Attachment, candidates: List[Snapshot]) -> Optional[Snapshot]:
    chosen = select_latest(attachment, candidates)
    if chosen:
        console.print(f"{attachment.device}: {snapshot_label(chosen)}")
    return chosen


def build_clients(config_data: Dict, profile: Optional[str], region: Optional[str],
                  endpoint_url: Optional[str], no_verify_ssl: bool) -> Tuple[AWSClient, RestoreManager]:
    aws = config_data['aws']
    restore = config_data['restore']
    aws_client = AWSClient(
        profile_name=profile or aws['profile'],
        region=region or aws['region'],
        endpoint_url=endpoint_url or aws['endpoint_url'],
        verify_ssl=aws['verify_ssl'] and not no_verify_ssl,
        wait_delay=restore['wait_delay'],
    )
    restore_manager = RestoreManager(
        aws_client,
        report_dir=restore['report_dir'],
        wait_timeout=restore['wait_timeout'],
        max_workers=restore['max_workers'],
        tag_prefix=restore['tag_prefix'],
    )
    return aws_client, restore_manager


def collect_identifiers(instance_id: Tuple[str, ...], instance_name: Tuple[str, ...],
                        instance_ids: Optional[str], instance_file: Optional[str]) -> Tuple[List[str], List[str]]:
    ids = list(instance_id)
    names = list(instance_name)
    if instance_ids:
        ids.extend(i.strip() for i in instance_ids.split(',') if i.strip())
    if instance_file:
        file_ids, file_names = split_identifiers(read_instance_file(instance_file))
        ids.extend(file_ids)
        names.extend(file_names)
    return ids, names


def find_target_instances(restore_manager: RestoreManager, ids: List[str], names: List[str]) -> List[Instance]:
    if not ids and not names:
        raise click.UsageError("No instances specified for restoration")
    logger.info(f"Looking up instances: {', '.join(ids + names)}")
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console
    ) as progress:
        progress.add_task(description="Getting instance details...")
        instances = restore_manager.find_instances(instance_ids=ids, names=names)
    display_instances(instances)
    return instances


def instance_options(f):
    options = [
        click.option('--instance-id', multiple=True, help='EC2 instance ID to restore (repeatable)'),
        click.option('--instance-name', multiple=True, help='EC2 instance name (tag) to restore (repeatable)'),
        click.option('--instance-ids', help='Comma-separated list of EC2 instance IDs to restore'),
        click.option('--instance-file', type=click.Path(exists=True, dir_okay=False),
                     help='File listing instance IDs or names, one per line'),
        click.option('--config', default='config.yaml', help='Path to configuration file'),
        click.option('--profile', help='AWS profile (overrides config)'),
        click.option('--region', help='AWS region (overrides config)'),
        click.option('--endpoint-url', help='Custom EC2 endpoint URL (overrides config)'),
        click.option('--no-verify-ssl', is_flag=True, help='Disable SSL certificate verification'),
    ]
    for option in reversed(options):
        f = option(f)
    return f


@click.group()
def cli():
    """EBS Snapshot Restore Tool"""
    pass


@cli.command()
@instance_options
def snapshots(instance_id, instance_name, instance_ids, instance_file, config, profile, region,
              endpoint_url, no_verify_ssl):
    """List candidate snapshots for every device of the instance(s)"""
    try:
        config_data = load_config(config)
        setup_logging(config_data)
        _, restore_manager = build_clients(config_data, profile, region, endpoint_url, no_verify_ssl)
        ids, names = collect_identifiers(instance_id, instance_name, instance_ids, instance_file)
        for instance in find_target_instances(restore_manager, ids, names):
            display_instance_snapshots(instance, restore_manager.get_snapshots(instance))
    except (ConfigError, RestoreError) as e:
        logger.error(f"Error listing snapshots: {str(e)}")
        console.print(f"[red]Error listing snapshots: {str(e)}[/red]")
        raise click.Abort()


@cli.command()
@instance_options
@click.option('--stop/--no-stop', default=False, help='Stop running instances before swapping volumes')
@click.option('--start/--no-start', default=False, help='Start instances after swapping volumes')
@click.option('--execute', is_flag=True, default=False,
              help='Actually restore; without this only the plan is shown (dry run)')
@click.option('--latest', is_flag=True, default=False,
              help='Pick the newest matching snapshot for every device instead of prompting')
@click.option('--yes', '-y', is_flag=True, default=False, help='Do not ask for confirmation')
def restore(instance_id, instance_name, instance_ids, instance_file, config, profile, region,
            endpoint_url, no_verify_ssl, stop, start, execute, latest, yes):
    """Restore the EBS volumes of EC2 instance(s) from snapshots"""
    start_time = datetime.now()
    try:
        config_data = load_config(config)
        setup_logging(config_data)
        logger.info("Starting EBS snapshot restore process")
        _, restore_manager = build_clients(config_data, profile, region, endpoint_url, no_verify_ssl)

        ids, names = collect_identifiers(instance_id, instance_name, instance_ids, instance_file)
        instances = find_target_instances(restore_manager, ids, names)
        logger.info(f"Processing {len(instances)} instances: {', '.join(i.instance_id for i in instances)}")

        flags = RestoreFlags(stop=stop, start=start, execute=execute)
        select_fn = latest_with_echo if latest else prompt_for_snapshot
        planned, failed = restore_manager.plan_instances(instances, select_fn, flags)
        for instance, plan in planned:
            display_plan(instance, plan)
        for result in failed:
            console.print(f"[red]Error planning instance {result.instance_id}: {result.error}[/red]")

        if not execute:
            console.print("[yellow]Dry run: no changes made. Re-run with --execute to restore.[/yellow]")
            results = failed + restore_manager.execute_plans(planned, flags)
        elif planned and not yes and not Confirm.ask(
                f"This will {'stop, ' if stop else ''}modify "
                f"{'and start ' if start else ''}{len(planned)} instance(s). Continue?"):
            console.print("[yellow]Operation cancelled by user[/yellow]")
            return
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console
            ) as progress:
                progress.add_task(description="Performing volume restore...")
                results = failed + restore_manager.execute_plans(planned, flags)

        display_results(results)
        total_duration = datetime.now() - start_time
        logger.info(f"EBS snapshot restore process completed in {total_duration.total_seconds():.2f} seconds")
        display_progress("EBS snapshot restore process completed", total_duration.total_seconds())

    except (ConfigError, RestoreError) as e:
        total_duration = datetime.now() - start_time
        logger.error(f"Error during restoration after {total_duration.total_seconds():.2f} seconds: {str(e)}")
        console.print(f"[red]Error during restoration: {str(e)}[/red]")
        raise click.Abort()

    if any(not r.succeeded for r in results):
        sys.exit(1)


def main():
    cli()


if __name__ == '__main__':
    main()
