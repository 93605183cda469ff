from typing import List
from rich.console import Console
from rich.table import Table
from .models import Attachment, Instance, RestorePlan, RestoreResult, Snapshot
from .plan_builder import candidates, newest_first

console = Console()


def snapshot_label(snapshot: Snapshot) -> str:
    """One-line description of a snapshot for prompts."""
    start = snapshot.start_time.isoformat() if snapshot.start_time else "<NO START TIME>"
    return f"{start} {snapshot.name or '<NO NAME>'} {snapshot.snapshot_id} {snapshot.size} GiB"


def display_instances(instances: List[Instance]) -> None:
    """Display instances and their block devices in a table format."""
    table = Table(title="Instances")
    table.add_column("Instance ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("State", style="yellow")
    table.add_column("Device", style="white")
    table.add_column("Volume ID", style="magenta")
    table.add_column("Size (GiB)", style="yellow")

    for instance in instances:
        for idx, attachment in enumerate(instance.attachments):
            table.add_row(
                instance.instance_id if idx == 0 else "",
                (instance.name or "N/A") if idx == 0 else "",
                instance.state if idx == 0 else "",
                attachment.device,
                attachment.volume_id or "(not EBS)",
                str(attachment.volume_size) if attachment.volume_size is not None else "N/A",
            )
        if not instance.attachments:
            table.add_row(instance.instance_id, instance.name or "N/A", instance.state, "-", "-", "-")

    console.print(table)


def display_candidates(attachment: Attachment, snapshot_candidates: List[Snapshot]) -> None:
    """Display the candidate snapshots for one device, newest first."""
    table = Table(title=f"Snapshots for {attachment.device} ({attachment.volume_size} GiB, {attachment.volume_id})")
    table.add_column("Index", style="cyan")
    table.add_column("Start Time", style="yellow")
    table.add_column("Name", style="green")
    table.add_column("Snapshot ID", style="magenta")
    table.add_column("Source Volume", style="white")
    table.add_column("Size (GiB)", style="yellow")

    for idx, snapshot in enumerate(newest_first(snapshot_candidates), 1):
        table.add_row(
            str(idx),
            snapshot.start_time.isoformat() if snapshot.start_time else "N/A",
            snapshot.name or "<NO NAME>",
            snapshot.snapshot_id,
            snapshot.volume_id or "N/A",
            str(snapshot.size),
        )

    console.print(table)


def display_instance_snapshots(instance: Instance, snapshots: List[Snapshot]) -> None:
    """Display every EBS device of an instance with its candidate snapshots."""
    console.print(f"\n[bold]{instance.display_name}[/bold]")
    for attachment in instance.ebs_attachments:
        device_candidates = candidates(snapshots, attachment.volume_size)
        if device_candidates:
            display_candidates(attachment, device_candidates)
        else:
            console.print(f"[yellow]No completed {attachment.volume_size} GiB snapshots for "
                          f"{attachment.device}[/yellow]")


def display_plan(instance: Instance, plan: RestorePlan) -> None:
    """Display the device to snapshot mapping that will be restored."""
    table = Table(title=f"Restore Plan for {instance.display_name}")
    table.add_column("Device", style="cyan")
    table.add_column("Current Volume ID", style="yellow")
    table.add_column("Snapshot ID", style="magenta")
    table.add_column("Size (GiB)", style="white")

    for entry in plan.entries:
        table.add_row(entry.device, entry.volume_id, entry.snapshot_id, str(entry.size))

    console.print(table)


def display_results(results: List[RestoreResult]) -> None:
    """Display volume changes and outcome of every instance in a table format."""
    table = Table(title="Volume Changes")
    table.add_column("Instance", style="cyan")
    table.add_column("Device", style="green")
    table.add_column("Previous Volume ID", style="yellow")
    table.add_column("Snapshot ID", style="magenta")
    table.add_column("New Volume ID", style="green")
    table.add_column("Status", style="bold")

    for result in results:
        label = f"{result.instance_name} ({result.instance_id})" if result.instance_name else result.instance_id
        if result.plan is None:
            table.add_row(label, "-", "-", "-", "-", f"✗ {type(result.error).__name__}")
            continue
        swapped = {s.device: s for s in result.swaps}
        for idx, entry in enumerate(result.plan.entries):
            swap = swapped.get(entry.device)
            if swap:
                status = "✓ Attached"
                new_volume_id = swap.new_volume_id
            elif result.dry_run:
                status = "Dry run"
                new_volume_id = "N/A"
            elif result.error is not None:
                status = "⚠️ Not swapped"
                new_volume_id = "N/A"
            else:
                status = "Pending"
                new_volume_id = "N/A"
            table.add_row(label if idx == 0 else "", entry.device, entry.volume_id,
                          entry.snapshot_id, new_volume_id, status)

    console.print(table)

    for result in results:
        if result.error is not None:
            console.print(f"[red]Error restoring {result.instance_id}: {result.error}[/red]")
        if result.report_file:
            console.print(f"[green]Restoration report generated: {result.report_file}[/green]")
