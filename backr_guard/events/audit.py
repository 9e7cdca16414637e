"""
Event Log Audit Tool — Independent chain integrity verification.

Any monitor holding a dumped event log can recompute every hash and confirm
that no event was altered, dropped or reordered after it was emitted.

Usage:
    python -m backr_guard.events.audit events.jsonl
    python -m backr_guard.events.audit events.jsonl --verbose
    python -m backr_guard.events.audit events.jsonl --event EmergencyTriggered
"""

from __future__ import annotations

import argparse
import sys
import time
from datetime import datetime, timezone

from rich.console import Console
from rich.table import Table

from backr_guard.events.log import EventLog, EventLogIntegrityError
from backr_guard.policy.schema import EventName

console = Console()


def run_audit(path: str, verbose: bool = False, event_name: EventName | None = None) -> bool:
    """
    Run a full hash chain audit of a dumped event log.

    Args:
        path: JSON Lines file written by ``EventLog.dump``.
        verbose: Print a per-event listing if True.
        event_name: Restrict the listing to one event type.

    Returns:
        True if the chain is valid, False otherwise.
    """
    console.print("\n[bold blue]═══ Policy Event Log Audit ═══[/bold blue]\n")

    try:
        log = EventLog.load(path)
    except (OSError, EventLogIntegrityError) as e:
        console.print(f"[bold red]✗ UNREADABLE[/bold red] {e}")
        return False

    console.print(f"  Events in log: [bold]{len(log)}[/bold]")
    if len(log) == 0:
        console.print("[yellow]⚠ Log is empty, nothing to verify[/yellow]")
        return True

    console.print("  Verifying hash chain...", end=" ")
    start_time = time.time()
    is_valid, entries_verified, message = log.verify_chain()
    elapsed = time.time() - start_time

    if is_valid:
        console.print("[bold green]✓ VALID[/bold green]")
        console.print(f"  Events verified: [bold]{entries_verified}[/bold]")
        console.print(f"  Verification time: {elapsed:.3f}s")
    else:
        console.print("[bold red]✗ INVALID[/bold red]")
        console.print(f"  Failure at event: {entries_verified}")
        console.print(f"  Reason: {message}")

    if verbose:
        events, total = log.query(event_name=event_name)
        console.print(f"\n[bold]Event Listing ({total}):[/bold]")
        table = Table(show_lines=True)
        table.add_column("Seq", style="cyan", width=6)
        table.add_column("Event", style="green", width=26)
        table.add_column("Timestamp", width=22)
        table.add_column("Args", style="yellow")
        table.add_column("Hash (first 16)", style="dim", width=18)

        for event in events:
            table.add_row(
                str(event.sequence_number),
                event.event_name.value,
                datetime.fromtimestamp(event.timestamp, tz=timezone.utc).isoformat()[:19],
                ", ".join(f"{k}={_short(v)}" for k, v in sorted(event.args.items())),
                event.entry_hash[:16] + "...",
            )
        console.print(table)

    console.print("\n[bold blue]═══ Audit Complete ═══[/bold blue]\n")
    return is_valid


def _short(value: object) -> str:
    text = str(value)
    if text.startswith("0x") and len(text) > 14:
        return text[:10] + "…"
    return text


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="backr-guard policy event log integrity auditor"
    )
    parser.add_argument("path", help="Event log dump (JSON Lines)")
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show detailed event listing",
    )
    parser.add_argument(
        "--event",
        choices=[e.value for e in EventName],
        default=None,
        help="Only list events of this type (with --verbose)",
    )
    args = parser.parse_args(argv)

    event_name = EventName(args.event) if args.event else None
    is_valid = run_audit(args.path, verbose=args.verbose, event_name=event_name)
    sys.exit(0 if is_valid else 1)


if __name__ == "__main__":
    main()
