"""
Fleet Compliance CLI

Configuration, evaluation and maintenance tools.

Usage:
    fleetcomply setup                 # Interactive configuration wizard
    fleetcomply init-db               # Create database tables
    fleetcomply policy                # Show effective thresholds
    fleetcomply evaluate FLIGHT_ID    # Validate one flight and store its status
    fleetcomply reevaluate USER_ID    # Recompute every flight for a pilot
    fleetcomply summary USER_ID       # Compliance summary
    fleetcomply violations USER_ID    # Violations for a date window
    fleetcomply sweep                 # Run the daily alert sweep now
    fleetcomply check                 # Validate current configuration
    fleetcomply generate-systemd      # Generate systemd unit file
"""

import json
import os
import secrets
import subprocess
import sys
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from .compliance.policy import ThresholdPolicy, load_policy, today_utc
from .cron import run_compliance_alerts
from .database.session import DEFAULT_DATABASE_URL, get_engine, init_db, session_scope
from .mailer import EmailClient
from .service import (
    evaluate_flight,
    get_compliance_summary,
    get_violations_for_window,
    reevaluate_flights,
)

app = typer.Typer(
    name="fleetcomply",
    help="Fleet compliance evaluation and alerting tools.",
    no_args_is_help=True,
)
console = Console()

SERVICE_NAME = "fleet-compliance"

STATUS_STYLES = {
    "compliant": "green",
    "warning": "yellow",
    "non_compliant": "red",
    "pending": "dim",
}


@app.callback()
def load_environment(
    env_file: Path = typer.Option(
        Path(".env"), "--env-file", help="Environment file loaded before running."
    ),
):
    """Load .env so commands see the same configuration as the server."""
    if env_file.exists():
        load_dotenv(env_file)


# =========================================================================
# Configuration helpers
# =========================================================================

def test_database_connection(url: str) -> tuple[bool, str]:
    """Test database connection and return (success, message)."""
    try:
        from sqlalchemy import create_engine, text

        engine = create_engine(url)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True, "Connection successful"
    except Exception as e:
        return False, str(e)


def generate_secret() -> str:
    """Generate a cryptographically secure shared secret."""
    return secrets.token_urlsafe(32)


def load_env_file(path: Path) -> dict:
    """Load environment variables from .env file."""
    env = {}
    if path.exists():
        with open(path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    env[key.strip()] = value.strip()
    return env


def write_env_file(path: Path, config: dict) -> None:
    """Write configuration to .env file."""
    lines = [
        "# Fleet Compliance Configuration",
        "# Generated by: fleetcomply setup",
        "",
        "# Server Binding",
        f"COMPLIANCE_HOST={config.get('COMPLIANCE_HOST', '127.0.0.1')}",
        f"COMPLIANCE_PORT={config.get('COMPLIANCE_PORT', '8300')}",
        "",
        "# Database",
        f"DATABASE_URL={config.get('DATABASE_URL', '')}",
        "",
        "# Access",
        f"COMPLIANCE_API_KEY={config.get('COMPLIANCE_API_KEY', '')}",
        f"CRON_SECRET={config.get('CRON_SECRET', '')}",
        "",
        "# Email",
        f"RESEND_API_KEY={config.get('RESEND_API_KEY', '')}",
        f"EMAIL_FROM={config.get('EMAIL_FROM', '')}",
        "",
        "# Thresholds (optional YAML overrides)",
        f"COMPLIANCE_POLICY_PATH={config.get('COMPLIANCE_POLICY_PATH', '')}",
        "",
    ]
    with open(path, "w") as f:
        f.write("\n".join(lines))


def detect_paths() -> dict:
    """Detect virtualenv, working directory, and user."""
    return {
        "workdir": Path.cwd().resolve(),
        "venv": Path(sys.prefix).resolve() if sys.prefix != sys.base_prefix else None,
        "python": Path(sys.executable).resolve(),
        "user": os.environ.get("USER", "root"),
    }


def generate_systemd_unit(paths: dict, env_path: Path) -> str:
    """Generate systemd unit file content."""
    exec_start = f"{paths['python']} -c 'from fleet_compliance.http_server import main; main()'"

    return f"""[Unit]
Description=Fleet Compliance API
After=network.target

[Service]
Type=simple
User={paths['user']}
Group={paths['user']}
WorkingDirectory={paths['workdir']}
EnvironmentFile={env_path.resolve()}
ExecStart={exec_start}
Restart=always
RestartSec=5

NoNewPrivileges=true
ProtectSystem=strict
ProtectHome=read-only
ReadWritePaths={paths['workdir']}

[Install]
WantedBy=multi-user.target
"""


def parse_day(value: Optional[str], option: str) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"expected YYYY-MM-DD, got {value!r}", param_hint=option)


def _policy_or_exit() -> ThresholdPolicy:
    try:
        return load_policy()
    except (OSError, ValueError) as e:
        console.print(f"[red]✗[/red] Could not load policy: {e}")
        raise typer.Exit(1)


# =========================================================================
# Setup
# =========================================================================

@app.command()
def setup():
    """Interactive setup wizard."""
    console.print(
        Panel.fit(
            "[bold blue]Fleet Compliance Setup[/bold blue]\n\n"
            "This wizard writes a .env file used by the API server, the\n"
            "daily alert sweep, and this CLI.",
            border_style="blue",
        )
    )

    env_path = Path.cwd() / ".env"
    existing = {}

    if env_path.exists():
        existing = load_env_file(env_path)
        console.print("\n[yellow]Found existing .env file. Values will be used as defaults.[/yellow]")
        if not Confirm.ask("Continue with setup?", default=True):
            console.print("Setup cancelled.", style="yellow")
            raise typer.Exit(0)

    config = {}

    # =========================================================================
    # STEP 1: Server Binding
    # =========================================================================
    console.print("\n" + "=" * 60)
    console.print("[bold cyan]STEP 1: Server Binding[/bold cyan]")
    console.print("=" * 60)
    config["COMPLIANCE_HOST"] = Prompt.ask(
        "  Listen address",
        default=existing.get("COMPLIANCE_HOST", "127.0.0.1"),
    )
    config["COMPLIANCE_PORT"] = Prompt.ask(
        "  Listen port",
        default=existing.get("COMPLIANCE_PORT", "8300"),
    )

    # =========================================================================
    # STEP 2: Database
    # =========================================================================
    console.print("\n" + "=" * 60)
    console.print("[bold cyan]STEP 2: Database[/bold cyan]")
    console.print("=" * 60)
    database_url = Prompt.ask(
        "  Database URL",
        default=existing.get("DATABASE_URL", DEFAULT_DATABASE_URL),
    )

    console.print("\n  Testing connection... ", end="")
    success, message = test_database_connection(database_url)
    if success:
        console.print("[green]OK[/green]")
    else:
        console.print("[red]FAILED[/red]")
        console.print(f"  Error: {message}", style="red")
        if not Confirm.ask("  Continue anyway?", default=False):
            raise typer.Exit(1)
    config["DATABASE_URL"] = database_url

    # =========================================================================
    # STEP 3: Access
    # =========================================================================
    console.print("\n" + "=" * 60)
    console.print("[bold cyan]STEP 3: Access[/bold cyan]")
    console.print("=" * 60)
    console.print("\n  The scheduler calls the alert sweep with 'Authorization: Bearer <CRON_SECRET>'.")

    if existing.get("CRON_SECRET"):
        config["CRON_SECRET"] = existing["CRON_SECRET"]
        console.print("  [green]✓[/green] Using existing CRON_SECRET")
    else:
        config["CRON_SECRET"] = generate_secret()
        console.print("  [green]✓[/green] Generated CRON_SECRET")

    config["COMPLIANCE_API_KEY"] = Prompt.ask(
        "  API key for the REST endpoints (blank = open access)",
        default=existing.get("COMPLIANCE_API_KEY", ""),
        password=True,
    )

    # =========================================================================
    # STEP 4: Email
    # =========================================================================
    console.print("\n" + "=" * 60)
    console.print("[bold cyan]STEP 4: Email Delivery[/bold cyan]")
    console.print("=" * 60)
    config["RESEND_API_KEY"] = Prompt.ask(
        "  Resend API key",
        default=existing.get("RESEND_API_KEY", ""),
        password=True,
    )
    if not config["RESEND_API_KEY"]:
        console.print("  [yellow]![/yellow] No key provided - alerts will be recorded but not emailed")
    config["EMAIL_FROM"] = Prompt.ask(
        "  From address",
        default=existing.get("EMAIL_FROM", ""),
    )
    config["COMPLIANCE_POLICY_PATH"] = existing.get("COMPLIANCE_POLICY_PATH", "")

    write_env_file(env_path, config)
    console.print(f"\n  [green]✓[/green] Configuration saved to {env_path}")

    if Confirm.ask("\n  Create database tables now?", default=True):
        init_db(get_engine(database_url))
        console.print("  [green]✓[/green] Tables created")

    console.print(
        Panel.fit(
            "[bold green]Setup Complete![/bold green]\n\n"
            f"Local: {config['COMPLIANCE_HOST']}:{config['COMPLIANCE_PORT']}\n\n"
            "[bold]Commands:[/bold]\n"
            "  [cyan]fleetcomply check[/cyan]             - Validate configuration\n"
            "  [cyan]fleetcomply generate-systemd[/cyan]  - Install the API service",
            border_style="green",
        )
    )


# =========================================================================
# Compliance commands
# =========================================================================

@app.command("init-db")
def init_db_command():
    """Create database tables."""
    init_db()
    console.print("[green]✓[/green] Database tables created")


@app.command()
def policy():
    """Show effective compliance thresholds."""
    effective = _policy_or_exit()
    source = os.environ.get("COMPLIANCE_POLICY_PATH") or "built-in defaults"

    table = Table(title=f"Compliance Policy ({source})")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Remote ID required above", f"{effective.remote_id_weight_threshold_lbs} lbs")
    table.add_row("Part 107 max weight", f"{effective.max_weight_lbs} lbs")
    table.add_row("Max altitude without authorization", f"{effective.max_altitude_ft} ft")
    for expiry in (effective.registration, effective.part107):
        windows = [f"critical ≤{expiry.critical_days}d", f"warning ≤{expiry.warning_days}d"]
        if expiry.notice_days is not None:
            windows.append(f"notice ≤{expiry.notice_days}d")
        table.add_row(f"{expiry.label} windows", ", ".join(windows))
    table.add_row(
        "Registration alert days",
        ", ".join(str(d) for d in sorted(effective.registration_alert_days, reverse=True)),
    )
    table.add_row(
        "Part 107 alert days",
        ", ".join(str(d) for d in sorted(effective.part107_alert_days, reverse=True)),
    )
    table.add_row("Notification dedupe window", str(effective.dedupe_window))
    console.print(table)


@app.command()
def evaluate(
    flight_id: str = typer.Argument(..., help="Flight to validate"),
    notify: bool = typer.Option(True, help="Record a notification for violations"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
):
    """Validate one flight and store its compliance status."""
    effective = _policy_or_exit()
    with session_scope() as db:
        result = evaluate_flight(db, flight_id, notify=notify, policy=effective)

    if "error" in result:
        console.print(f"[red]✗[/red] {result['error']}")
        raise typer.Exit(1)

    if as_json:
        console.print_json(json.dumps(result))
        return

    style = STATUS_STYLES.get(result["status"], "white")
    console.print(f"Flight {flight_id}: [{style}]{result['status']}[/{style}]")
    for finding in result["violations"]:
        console.print(f"  [red]✗[/red] {finding['message']}")
    for finding in result["warnings"]:
        console.print(f"  [yellow]![/yellow] {finding['message']}")
    console.print(f"  [dim]Checks: {', '.join(c['type'] for c in result['checks'])}[/dim]")


@app.command()
def reevaluate(user_id: str = typer.Argument(..., help="Pilot whose flights to recompute")):
    """Recompute compliance for every flight a pilot has logged."""
    effective = _policy_or_exit()
    with session_scope() as db:
        results = reevaluate_flights(db, user_id, policy=effective)

    console.print(
        f"Evaluated {results['evaluated']} flight(s), {results['changed']} changed status"
    )
    for error in results["errors"]:
        console.print(f"  [red]✗[/red] {error}")
    if results["errors"]:
        raise typer.Exit(1)


@app.command()
def summary(
    user_id: str = typer.Argument(..., help="Pilot to summarize"),
    from_date: Optional[str] = typer.Option(None, "--from", help="Window start (YYYY-MM-DD)"),
    to_date: Optional[str] = typer.Option(None, "--to", help="Window end (YYYY-MM-DD)"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
):
    """Show a pilot's compliance summary."""
    lower = parse_day(from_date, "--from")
    upper = parse_day(to_date, "--to")
    window = (lower, upper) if lower or upper else None
    effective = _policy_or_exit()

    with session_scope() as db:
        result = get_compliance_summary(db, user_id, window=window, policy=effective)

    if as_json:
        console.print_json(json.dumps(result))
        return

    table = Table(title=f"Compliance Summary: {user_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Score", f"{result['score']}%")
    table.add_row("Total flights", str(result["total_flights"]))
    table.add_row("Compliant", str(result["compliant_flights"]))
    table.add_row("Non-compliant", str(result["non_compliant_flights"]))
    table.add_row("Warning", str(result["warning_flights"]))
    table.add_row("Pending", str(result["pending_flights"]))
    table.add_row("Last flight", result["last_flight_date"] or "-")
    console.print(table)

    if result["upcoming_expirations"]:
        expiring = Table(title="Upcoming Expirations")
        expiring.add_column("Item", style="cyan")
        expiring.add_column("Status")
        expiring.add_column("Message")
        for item in result["upcoming_expirations"]:
            expiring.add_row(item["item"], item["status"], item["message"])
        console.print(expiring)


@app.command()
def violations(
    user_id: str = typer.Argument(..., help="Pilot to list violations for"),
    from_date: Optional[str] = typer.Option(None, "--from", help="Window start (YYYY-MM-DD)"),
    to_date: Optional[str] = typer.Option(None, "--to", help="Window end (YYYY-MM-DD)"),
    days: int = typer.Option(30, help="Window length when --from is omitted"),
):
    """List violations for a pilot, newest first."""
    upper = parse_day(to_date, "--to") or today_utc()
    lower = parse_day(from_date, "--from") or upper - timedelta(days=days)
    if lower > upper:
        raise typer.BadParameter("--from must not be after --to", param_hint="--from")
    effective = _policy_or_exit()

    with session_scope() as db:
        result = get_violations_for_window(db, user_id, lower, upper, policy=effective)

    if not result["violations"]:
        console.print(f"[green]✓[/green] No violations between {lower} and {upper}")
        return

    table = Table(title=f"Violations {lower} to {upper}")
    table.add_column("Date", style="dim")
    table.add_column("Category", style="cyan")
    table.add_column("Severity")
    table.add_column("Message")
    for entry in result["violations"]:
        severity = entry["severity"]
        style = "red" if severity == "error" else "yellow"
        when = entry["date"][:10] if entry["date"] else "-"
        table.add_row(when, entry["category"], f"[{style}]{severity}[/{style}]", entry["message"])
    console.print(table)
    console.print(f"{result['count']} violation(s)")


@app.command()
def sweep(
    on: Optional[str] = typer.Option(None, "--date", help="Run as if today were this date"),
):
    """Run the daily compliance alert sweep now."""
    today = parse_day(on, "--date")
    now = datetime.combine(today, datetime.min.time()) if today else None
    effective = _policy_or_exit()
    mailer = EmailClient()
    if not mailer.configured:
        console.print("[yellow]![/yellow] RESEND_API_KEY not set - deliveries will fail")

    with session_scope() as db:
        results = run_compliance_alerts(db, mailer, today=today, now=now, policy=effective)

    table = Table(title="Compliance Sweep")
    table.add_column("Alert", style="cyan")
    table.add_column("Sent", justify="right")
    table.add_row("Registration", str(results["registration_alerts"]))
    table.add_row("Part 107", str(results["part107_alerts"]))
    table.add_row("Weekly summaries", str(results["weekly_summaries"]))
    console.print(table)

    for error in results["errors"]:
        console.print(f"  [red]✗[/red] {error}")
    if results["errors"]:
        raise typer.Exit(1)


# =========================================================================
# Check
# =========================================================================

def _run_check(env_path: Optional[Path] = None) -> bool:
    """Internal check implementation. Returns True if all checks pass."""
    if env_path is None:
        env_path = Path.cwd() / ".env"

    all_passed = True
    load_dotenv(env_path)

    console.print("\n[bold]Environment:[/bold]")

    if env_path.exists():
        console.print("  [green]✓[/green] .env file exists")
    else:
        console.print("  [yellow]![/yellow] .env file not found (using process environment)")

    db_url = os.environ.get("DATABASE_URL")
    if db_url:
        console.print("  [green]✓[/green] DATABASE_URL set")
    else:
        console.print(f"  [yellow]![/yellow] DATABASE_URL not set (default {DEFAULT_DATABASE_URL})")
        db_url = DEFAULT_DATABASE_URL

    console.print("\n[bold]Database:[/bold]")

    success, message = test_database_connection(db_url)
    if success:
        console.print("  [green]✓[/green] Connection successful")
        try:
            from sqlalchemy import create_engine, inspect

            tables = set(inspect(create_engine(db_url)).get_table_names())
            missing = {"user_profiles", "user_settings", "aircraft", "flights", "notifications"} - tables
            if missing:
                console.print(f"  [red]✗[/red] Missing tables: {', '.join(sorted(missing))} (run init-db)")
                all_passed = False
            else:
                console.print("  [green]✓[/green] Tables exist")
        except Exception as e:
            console.print(f"  [yellow]![/yellow] Could not inspect tables: {e}")
    else:
        console.print(f"  [red]✗[/red] Connection failed: {message}")
        all_passed = False

    console.print("\n[bold]Policy:[/bold]")
    try:
        load_policy()
        console.print("  [green]✓[/green] Thresholds loaded")
    except (OSError, ValueError) as e:
        console.print(f"  [red]✗[/red] {e}")
        all_passed = False

    console.print("\n[bold]Security:[/bold]")

    cron_secret = os.environ.get("CRON_SECRET")
    if cron_secret:
        console.print("  [green]✓[/green] CRON_SECRET configured")
    else:
        console.print("  [red]✗[/red] CRON_SECRET not set (cron endpoint rejects every request)")
        all_passed = False

    api_key = os.environ.get("COMPLIANCE_API_KEY") or os.environ.get("COMPLIANCE_API_KEYS")
    if api_key:
        masked = api_key[:8] + "****" if len(api_key) > 8 else "****"
        console.print(f"  [green]✓[/green] API key configured ({masked})")
    else:
        console.print("  [yellow]![/yellow] No API key set (REST endpoints accept any request)")

    console.print("\n[bold]Email:[/bold]")
    if os.environ.get("RESEND_API_KEY"):
        console.print("  [green]✓[/green] RESEND_API_KEY configured")
    else:
        console.print("  [yellow]![/yellow] RESEND_API_KEY not set (alerts cannot be emailed)")

    if all_passed:
        console.print("\n[bold green]All checks passed![/bold green]")
    else:
        console.print("\n[bold red]Some checks failed.[/bold red]")

    return all_passed


@app.command()
def check():
    """Validate current configuration."""
    console.print(
        Panel.fit(
            "[bold blue]Fleet Compliance - Configuration Check[/bold blue]",
            border_style="blue",
        )
    )
    success = _run_check()
    raise typer.Exit(0 if success else 1)


# =========================================================================
# Systemd
# =========================================================================

@app.command("generate-systemd")
def generate_systemd(
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write the unit here instead of prompting"
    ),
):
    """Generate systemd unit file for the API server."""
    console.print(
        Panel.fit(
            "[bold blue]Fleet Compliance - Systemd Generator[/bold blue]",
            border_style="blue",
        )
    )
    env_path = Path.cwd() / ".env"
    paths = detect_paths()

    table = Table(title="Detected Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Working directory", str(paths["workdir"]))
    table.add_row("Python", str(paths["python"]))
    table.add_row("User", paths["user"])
    if paths["venv"]:
        table.add_row("Virtual environment", str(paths["venv"]))
    console.print(table)

    unit_content = generate_systemd_unit(paths, env_path)
    console.print(Panel(unit_content, title=f"{SERVICE_NAME}.service"))

    if output is not None:
        output.write_text(unit_content)
        console.print(f"  [green]✓[/green] Saved to {output}")
        return

    console.print("\n[bold]Where to save?[/bold]")
    console.print("  1. Install to /etc/systemd/system/ [green](recommended)[/green]")
    console.print("  2. Save to current directory")
    console.print("  3. Don't save")

    action = Prompt.ask("\n  Select action", choices=["1", "2", "3"], default="1")

    if action == "1":
        output_path = Path(f"/etc/systemd/system/{SERVICE_NAME}.service")
        try:
            with open(output_path, "w") as f:
                f.write(unit_content)
        except PermissionError:
            console.print("  Requires sudo privileges...", style="yellow")
            proc = subprocess.run(
                ["sudo", "tee", str(output_path)],
                input=unit_content.encode(),
                capture_output=True,
            )
            if proc.returncode != 0:
                console.print("  [red]✗[/red] Failed to write systemd unit file", style="red")
                console.print("  Try option 2 to save locally, then install manually.")
                return

        console.print(f"  [green]✓[/green] Installed to {output_path}")
        try:
            subprocess.run(["sudo", "systemctl", "daemon-reload"], check=True, capture_output=True)
            console.print("  [green]✓[/green] Reloaded systemd")
        except subprocess.CalledProcessError:
            console.print("  [yellow]![/yellow] Could not reload systemd")

        console.print(f"\n  [bold]To start now:[/bold] sudo systemctl enable --now {SERVICE_NAME}")

    elif action == "2":
        output_path = Path.cwd() / f"{SERVICE_NAME}.service"
        with open(output_path, "w") as f:
            f.write(unit_content)
        console.print(f"\n  [green]✓[/green] Saved to {output_path}")
        console.print("\n  [bold]To install manually:[/bold]")
        console.print(f"    sudo cp {output_path} /etc/systemd/system/")
        console.print("    sudo systemctl daemon-reload")
        console.print(f"    sudo systemctl enable --now {SERVICE_NAME}")

    else:
        console.print("\n  Skipped. Copy the unit file above manually if needed.")


if __name__ == "__main__":
    app()
