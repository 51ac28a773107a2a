import json
import random
import time
import webbrowser
from datetime import datetime
from typing import Any

import typer
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from tool_lock.challenges import check_answer
from tool_lock.client import DaemonNotRunning, send_request
from tool_lock.errors import ToolLockError
from tool_lock.payments import PAYMENT_INTENT_PREFIX
from tool_lock.schema import Challenge, ChallengeType, PaymentOption, RecurrenceKind
from tool_lock.settings import settings
from tool_lock.utils.logging import setup_logging
from tool_lock.utils.time import format_clock, format_duration_seconds, seconds_until

app = typer.Typer(help="tool-lock - lock yourself out of a command-line tool")
schedule_app = typer.Typer(help="Manage recurring lock schedules")
config_app = typer.Typer(help="Show or change daemon settings")
app.add_typer(schedule_app, name="schedule")
app.add_typer(config_app, name="config")
console = Console()

PAYMENT_CONFIRM_WAIT_SECONDS = 30
DISCOURAGING_MESSAGES = [
    "You set this lock. You knew this moment would come.",
    "Your future self is sighing right now.",
    "The feature can wait. Your dignity cannot.",
    "Past-you set this lock because past-you didn't trust present-you.",
    "The code will still be broken tomorrow. You'll just be more tired.",
    "You locked yourself out for a reason. Try to remember what that reason was.",
    "Somewhere, a rubber duck is judging you.",
    "go touch grass",
]


def _request(payload: dict[str, Any]) -> dict[str, Any]:
    try:
        response = send_request(payload, settings.socket_path)
    except DaemonNotRunning:
        console.print("[red]Error:[/red] Daemon is not running. Start it with `tool-lock start`.")
        raise typer.Exit(1) from None
    except (OSError, ToolLockError, ValueError) as e:
        console.print(f"[red]Error:[/red] Could not talk to the daemon: {e}")
        raise typer.Exit(1) from None
    if response.get("type") == "error":
        console.print(f"[red]Error:[/red] {response.get('message')}")
        raise typer.Exit(1)
    return response


def _fail(response: dict[str, Any], prefix: str = "Error"):
    console.print(f"[red]{prefix}:[/red] {response.get('error') or 'unknown error'}")
    raise typer.Exit(1)


def _clock(value: str | None) -> str:
    return format_clock(datetime.fromisoformat(value)) if value else "-"


def _print_lock(lock: dict[str, Any]):
    state = lock["status"]
    if state == "unlocked":
        console.print("[bold green]○ Unlocked[/bold green]")
    elif state == "locked":
        remaining = seconds_until(datetime.fromisoformat(lock["expiresAt"]))
        label = "Hard locked" if lock.get("hardLock") else "Locked"
        console.print(
            f"[bold red]● {label}[/bold red] until {_clock(lock['expiresAt'])} "
            f"({format_duration_seconds(remaining)} left)"
        )
        if lock.get("sourceId"):
            console.print(f"Engaged by schedule [cyan]{lock['sourceId']}[/cyan]")
        console.print(f"Bypass attempts this lock: {lock.get('bypassAttempts', 0)}")
    else:
        console.print(
            f"[bold yellow]◐ Grace period[/bold yellow] until {_clock(lock['graceExpiresAt'])}, "
            f"lock re-engages until {_clock(lock.get('expiresAt'))}"
        )
    keys = lock.get("pendingHandoffKeys") or []
    if keys:
        console.print(f"[dim]{len(keys)} interrupted session(s), see `tool-lock handoff`[/dim]")


def _wait(seconds: int, label: str = "Wait"):
    with console.status(f"{label}: {seconds}s remaining...") as status:
        for remaining in range(seconds, 0, -1):
            status.update(f"{label}: {remaining}s remaining...")
            time.sleep(1)


@app.command()
def start(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Run the daemon in the foreground."""
    from tool_lock.daemon import DaemonAlreadyRunning, run_daemon

    setup_logging(verbose=verbose)
    try:
        run_daemon()
    except DaemonAlreadyRunning as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(1) from None


@app.command()
def status(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Show the current lock state."""
    setup_logging(verbose=verbose, log_to_file=False)
    response = _request({"type": "status"})
    _print_lock(response["lock"])


@app.command()
def lock(
    minutes: float = typer.Argument(..., help="Lock duration in minutes"),
    hard: bool = typer.Option(False, "--hard", help="No bypass until the lock expires"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Lock the tool for MINUTES."""
    setup_logging(verbose=verbose, log_to_file=False)
    response = _request({"type": "lock", "durationMinutes": minutes, "hardLock": hard})
    if not response["ok"]:
        _fail(response)
    _print_lock(response["lock"])


def _run_challenge(challenge: Challenge) -> bool:
    if challenge.cooldown_seconds > 0:
        console.print(f"\nCooldown: {challenge.cooldown_seconds}s")
        _wait(challenge.cooldown_seconds)

    if challenge.type is ChallengeType.COOLDOWN:
        return True

    if challenge.type is ChallengeType.TYPING:
        console.print("\nType the following string [bold]BACKWARDS[/bold] (right to left):")
        console.print(f"\n  {challenge.prompt}\n", highlight=False)
        answer = Prompt.ask(">")
        if not check_answer(challenge, answer):
            console.print("[red]Mismatch! Bypass failed.[/red]")
            return False
        return True

    if challenge.type is ChallengeType.MATH:
        answer = Prompt.ask(f"\nSolve: {challenge.prompt} = ?")
        if not check_answer(challenge, answer):
            console.print(f"[red]Wrong! Expected {challenge.answer}[/red]")
            return False
        return True

    console.print(f"\n{challenge.prompt}")
    answer = Prompt.ask(">")
    if not check_answer(challenge, answer):
        console.print(
            f"[red]Too short! ({len(answer.split())}/{challenge.min_words} words)[/red]"
        )
        return False
    return True


def _run_payment(option: PaymentOption) -> tuple[bool, str | None]:
    dollars = f"${option.amount / 100:.2f}"
    if option.url:
        console.print(f"\nOpening payment page: {option.url}")
        webbrowser.open(option.url)

    if option.has_verification:
        ref = Prompt.ask(f"\nEnter the Stripe Payment Intent ID ({PAYMENT_INTENT_PREFIX}...) from your receipt")
        if not ref.startswith(PAYMENT_INTENT_PREFIX):
            console.print(f"[red]Invalid payment intent ID. Must start with {PAYMENT_INTENT_PREFIX}[/red]")
            return False, None
        return True, ref

    console.print(f"\nMandatory wait before confirming the {dollars} payment...")
    _wait(PAYMENT_CONFIRM_WAIT_SECONDS)
    confirm = Prompt.ask(f"Did you complete the {dollars} payment?", choices=["yes", "no"], default="no")
    return confirm == "yes", None


@app.command()
def unlock(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Unlock early by completing a bypass challenge."""
    setup_logging(verbose=verbose, log_to_file=False)
    current = _request({"type": "status"})["lock"]

    if current["status"] == "unlocked":
        console.print("Already unlocked.")
        return
    if current["status"] == "grace":
        if typer.confirm("In a grace period. End the lock period now?", default=False):
            response = _request({"type": "unlock"})
            if not response["ok"]:
                _fail(response)
            console.print("[green]Unlocked.[/green]")
        return
    if current.get("hardLock"):
        console.print(
            f"[red]Hard lock is active - bypass is not allowed.[/red]\n"
            f"Lock expires at {_clock(current.get('expiresAt'))}."
        )
        raise typer.Exit(1)

    console.print("\n[yellow]Bypass Challenge[/yellow]")
    console.print(f"Attempt #{current.get('bypassAttempts', 0) + 1}")
    console.print(f"[dim]{random.choice(DISCOURAGING_MESSAGES)}[/dim]\n")

    ticket = _request({"type": "bypass-start"})
    if not ticket["ok"]:
        _fail(ticket, "Bypass blocked")

    challenges = [Challenge.model_validate(c) for c in ticket["challenges"]]
    option = ticket.get("paymentOption")
    use_payment, payment_ref = False, None

    if option:
        option = PaymentOption.model_validate(option)
        dollars = f"${option.amount / 100:.2f}"
        if not challenges:
            console.print(f"Challenge bypass is disabled. Payment required ({dollars}).")
            use_payment, payment_ref = _run_payment(option)
            if not use_payment:
                console.print("\nBypass cancelled.")
                raise typer.Exit(1)
        else:
            console.print("How would you like to bypass?")
            console.print("  A) Complete a challenge (free)")
            console.print(f"  B) Pay {dollars}")
            if Prompt.ask("Choice", choices=["A", "B"], default="A") == "B":
                use_payment, payment_ref = _run_payment(option)

    if not use_payment:
        for challenge in challenges:
            if not _run_challenge(challenge):
                console.print("\nBypass failed. Try again later.")
                raise typer.Exit(1)

    payload: dict[str, Any] = {
        "type": "bypass-complete",
        "challengeId": ticket["challengeId"],
        "proof": "completed",
    }
    if use_payment:
        payload["paymentMethod"] = True
    if payment_ref:
        payload["paymentRef"] = payment_ref
    result = _request(payload)
    if not result["ok"]:
        _fail(result, "Bypass failed")

    grace_until = datetime.fromisoformat(result["graceExpiresAt"])
    console.print(
        f"\n[green]Bypass successful![/green] Access for "
        f"{format_duration_seconds(seconds_until(grace_until))} (until {format_clock(grace_until)})."
    )
    if current.get("expiresAt"):
        console.print(f"Lock re-engages after grace and expires at {_clock(current['expiresAt'])}.")


@schedule_app.command("add")
def schedule_add(
    start_time: str = typer.Argument(..., help="Start time (e.g. 9am, 21:30)"),
    end_time: str = typer.Argument(..., help="End time, same day (e.g. 5pm, 23:00)"),
    name: str = typer.Option("", "--name", "-n", help="Shown in notifications"),
    kind: RecurrenceKind = typer.Option(RecurrenceKind.DAILY, "--type", "-t", help="Recurrence"),
    days: list[int] | None = typer.Option(
        None, "--day", "-d", help="Day number for --type custom, 0=Sunday (repeatable)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Add a recurring lock window."""
    setup_logging(verbose=verbose, log_to_file=False)
    schedule = {
        "name": name,
        "type": kind.value,
        "startTime": start_time,
        "endTime": end_time,
        "days": days or None,
        "enabled": True,
    }
    response = _request({"type": "schedule-add", "schedule": schedule})
    if not response["ok"]:
        _fail(response)
    added = response["schedule"]
    console.print(
        f"[green]Added schedule[/green] {added['id']}: {added['startTime']} - {added['endTime']}"
    )
    if added["endTime"] <= added["startTime"]:
        console.print("[yellow]Warning:[/yellow] windows crossing midnight never activate.")


@schedule_app.command("list")
def schedule_list(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """List schedules."""
    setup_logging(verbose=verbose, log_to_file=False)
    schedules = _request({"type": "schedule-list"})["schedules"]
    if not schedules:
        console.print("[yellow]No schedules found.[/yellow]")
        return

    table = Table(title="Schedules")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Type", style="blue")
    table.add_column("Start", style="magenta")
    table.add_column("End", style="magenta")
    table.add_column("Days", style="green")
    table.add_column("Enabled", style="yellow")
    for s in schedules:
        table.add_row(
            s["id"],
            s.get("name") or "",
            s["type"],
            s["startTime"],
            s["endTime"],
            ",".join(str(d) for d in s.get("days") or []),
            "Yes" if s["enabled"] else "No",
        )
    console.print(table)


@schedule_app.command("remove")
def schedule_remove(
    schedule_id: str = typer.Argument(..., help="Schedule id (from `schedule list`)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Remove a schedule."""
    setup_logging(verbose=verbose, log_to_file=False)
    response = _request({"type": "schedule-remove", "id": schedule_id})
    if not response["ok"]:
        _fail(response)
    console.print(f"[green]Removed schedule[/green] {schedule_id}")


@schedule_app.command("toggle")
def schedule_toggle(
    schedule_id: str = typer.Argument(..., help="Schedule id (from `schedule list`)"),
    enabled: bool = typer.Option(..., "--on/--off", help="Enable or disable"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Enable or disable a schedule."""
    setup_logging(verbose=verbose, log_to_file=False)
    response = _request({"type": "schedule-toggle", "id": schedule_id, "enabled": enabled})
    if not response["ok"]:
        _fail(response)
    console.print(f"Schedule {schedule_id} {'enabled' if enabled else 'disabled'}")


def _print_config(config: dict[str, Any]):
    table = Table(title="Current Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="magenta")
    for key, value in config.items():
        table.add_row(key, json.dumps(value))
    console.print(table)


@config_app.command("show")
def config_show(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Show the daemon's settings."""
    setup_logging(verbose=verbose, log_to_file=False)
    _print_config(_request({"type": "config-get"})["config"])


def parse_config_value(raw: str) -> Any:
    """JSON if it parses (true, 10, [0, 6]), else the raw string."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Setting name, e.g. graceMinutes"),
    value: str = typer.Argument(..., help="New value; JSON is accepted"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Change one setting. Rejected while locked."""
    setup_logging(verbose=verbose, log_to_file=False)
    response = _request({"type": "config-set", "key": key, "value": parse_config_value(value)})
    if not response["ok"]:
        _fail(response)
    _print_config(response["config"])
    console.print("[green]Configuration saved![/green]")


@app.command()
def stats(
    period: str = typer.Option("week", "--period", "-p", help="day, week or month"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Show bypass counts per day."""
    setup_logging(verbose=verbose, log_to_file=False)
    days = _request({"type": "stats", "period": period})["days"]
    if not days:
        console.print(f"No bypasses in the last {period}. Nice.")
        return
    table = Table(title=f"Bypasses ({period})")
    table.add_column("Date", style="cyan")
    table.add_column("Bypasses", justify="right", style="magenta")
    for day in days:
        table.add_row(day["date"], str(day["bypassCount"]))
    console.print(table)
    console.print(f"Total: {sum(d['bypassCount'] for d in days)}")


@app.command()
def handoff(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """List and clear sessions that the last lock interrupted."""
    setup_logging(verbose=verbose, log_to_file=False)
    response = _request({"type": "handoff-ack"})
    if not response["ok"]:
        _fail(response)
    if not response["keys"]:
        console.print("No interrupted sessions.")
        return
    for key in response["keys"]:
        name, pid, cwd = key.split(":", 2)
        console.print(f"[cyan]{name}[/cyan] (PID {pid}) in {cwd or '?'}")


@app.callback()
def main():
    """
    tool-lock - a self-imposed lock for a command-line tool.

    Use 'start' to run the daemon, 'lock' to lock, 'unlock' to bypass early
    and 'schedule' to manage recurring locks.
    """


if __name__ == "__main__":
    app()
