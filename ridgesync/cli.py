"""ridgesync CLI: the entry point the sync timer and operators call."""

from __future__ import annotations

import logging
import signal
import sys

import click
from rich.console import Console
from rich.table import Table

from ridgesync import __version__
from ridgesync.config import build_config, load_settings, resolve_config_path
from ridgesync.errors import ConfigError, GitOperationError, VerificationError
from ridgesync.log import configure_logging, hand_over_logs

console = Console()
logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2


def _load(config_path: str | None, profile_name: str | None):
    """Resolve settings, profile and SyncConfig, exiting with status 2 on bad input."""
    from ridgesync.profiles.registry import get_profile

    path = resolve_config_path(config_path)
    try:
        settings = load_settings(path)
        name = profile_name or settings.get("PROFILE")
        if not name:
            raise ConfigError(f"No profile selected: set PROFILE in {path} or pass --profile")
        profile = get_profile(name, settings.get("PROFILES_FILE"))
        config = build_config(settings, profile)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/] {e}", highlight=False)
        sys.exit(EXIT_CONFIG_ERROR)
    return config, profile


def _exit_on_signal(signum, frame):
    # SystemExit unwinds through the lock's context manager.
    raise SystemExit(128 + signum)


config_option = click.option(
    "--config",
    "-c",
    "config_path",
    default=None,
    help="Settings file (default: $RIDGESYNC_CONFIG or /etc/ridgesync.conf)",
)
profile_option = click.option(
    "--profile", "-p", default=None, help="Profile name (overrides PROFILE in the settings file)"
)


@click.group()
@click.version_option(version=__version__)
def main():
    """ridgesync: GitOps repository sync for Pine Ridge hosts.

    Keeps a working copy in step with a branch of a private Git repository
    and starts the host's configuration applier whenever it changes.
    """


# ── Sync ─────────────────────────────────────────────────────────────


@main.command()
@config_option
@profile_option
@click.option("--verbose", "-v", is_flag=True, help="Log debug detail")
def sync(config_path: str | None, profile: str | None, verbose: bool):
    """Run one sync cycle (what the timer invokes).

    Exits 0 unless the sync itself failed, so a flaky applier does not put
    the timer's service into a failed state.
    """
    from ridgesync.sync.agent import RepoSyncAgent

    interactive = sys.stderr.isatty()
    level = logging.DEBUG if verbose else logging.INFO
    configure_logging(interactive=interactive, level=level)

    config, selected = _load(config_path, profile)
    try:
        configure_logging(config.log_path, interactive=interactive, level=level)
    except OSError as e:
        logger.warning("Cannot open log file %s (%s), keeping previous log handlers", config.log_path, e)
    else:
        if config.management_user:
            try:
                hand_over_logs(config.log_path.parent, config.management_user)
            except (LookupError, OSError) as e:
                logger.warning(
                    "Cannot give %s ownership of %s: %s",
                    config.management_user,
                    config.log_path.parent,
                    e,
                )

    signal.signal(signal.SIGTERM, _exit_on_signal)
    signal.signal(signal.SIGHUP, _exit_on_signal)

    outcome = RepoSyncAgent(config, selected).run()
    sys.exit(outcome.exit_code)


# ── Status ───────────────────────────────────────────────────────────


@main.command()
@config_option
@profile_option
def status(config_path: str | None, profile: str | None):
    """Show lock owner and working copy state (no network access)."""
    from ridgesync.sync.lock import pid_alive, read_owner
    from ridgesync.utils.git_ops import WorkingCopy

    config, selected = _load(config_path, profile)

    table = Table(title=f"{selected.name} sync status", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    table.add_row("Repository", config.repository_url)
    table.add_row("Target branch", config.target_branch)
    table.add_row("Working copy", str(config.working_copy_path))
    table.add_row("Management user", config.management_user or "-")

    owner = read_owner(config.lock_path)
    if owner is None:
        lock_state = "[green]free[/]"
    elif pid_alive(owner):
        lock_state = f"[yellow]held by PID {owner}[/]"
    else:
        lock_state = f"[red]stale (PID {owner})[/]"
    table.add_row("Lock", lock_state)

    emergency = config.emergency_marker_path.exists()
    table.add_row("Emergency marker", "[red]present[/]" if emergency else "absent")

    try:
        state = WorkingCopy(config.working_copy_path).read_state(config.target_branch)
    except GitOperationError as e:
        table.add_row("Git", f"[red]{e}[/]")
    else:
        table.add_row("Current branch", state.current_branch or "(detached)")
        table.add_row("HEAD", state.local_commit or "-")
        table.add_row(f"origin/{config.target_branch}", state.remote_commit or "-")
        in_sync = state.on_branch(config.target_branch) and state.up_to_date
        table.add_row("In sync", "[green]yes[/]" if in_sync else "[yellow]no[/]")

    console.print(table)


# ── Validate ─────────────────────────────────────────────────────────


@main.command()
@config_option
@profile_option
def validate(config_path: str | None, profile: str | None):
    """Check the working copy has the layout and prerequisites the applier expects."""
    config, selected = _load(config_path, profile)

    report = selected.validate_layout(config.working_copy_path)
    for path in selected.required_paths:
        mark = "[red]x[/]" if path in report.required_missing else "[green]v[/]"
        console.print(f"  {mark} {path} (required)")
    for path in selected.optional_paths:
        mark = "[yellow]![/]" if path in report.optional_missing else "[green]v[/]"
        console.print(f"  {mark} {path} (optional)")

    if not report.valid:
        console.print("\n[red]Invalid repository structure[/]")
        sys.exit(1)

    for check in selected.post_sync_checks:
        try:
            check.run(config.working_copy_path)
        except VerificationError as e:
            console.print(f"  [red]x[/] {check.describe()}: {e}", highlight=False)
            sys.exit(1)
        console.print(f"  [green]v[/] {check.describe()}")
    console.print("\n[green]Valid![/]")


# ── Clone ────────────────────────────────────────────────────────────


@main.command()
@config_option
@profile_option
@click.option("--ssh-url", is_flag=True, help="Rewrite a GitHub HTTPS URL to SSH before cloning")
def clone(config_path: str | None, profile: str | None, ssh_url: bool):
    """Provision the working copy: clone, or re-clone if it points elsewhere."""
    from ridgesync.utils.git_ops import ensure_working_copy, make_executable, to_ssh_url

    configure_logging(interactive=True)
    config, selected = _load(config_path, profile)

    url = to_ssh_url(config.repository_url) if ssh_url else config.repository_url
    if url != config.repository_url:
        console.print(f"Converted repository URL to SSH format: {url}")

    try:
        ensure_working_copy(
            url,
            config.target_branch,
            config.working_copy_path,
            identity_path=config.ssh_identity_path,
        )
    except GitOperationError as e:
        console.print(f"[red]Clone failed:[/] {e}", highlight=False)
        sys.exit(1)

    make_executable(config.working_copy_path, selected.executable_patterns)
    console.print(f"[green]Working copy ready:[/] {config.working_copy_path}")


# ── Profiles ─────────────────────────────────────────────────────────


@main.command(name="profiles")
@click.option("--profiles-file", "-f", default=None, help="YAML file with extra profiles")
def list_profiles(profiles_file: str | None):
    """List the project profiles available to the sync agent."""
    from ridgesync.profiles.registry import available_profiles

    try:
        profiles = available_profiles(profiles_file)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/] {e}", highlight=False)
        sys.exit(EXIT_CONFIG_ERROR)

    table = Table(title=f"Profiles ({len(profiles)})")
    table.add_column("Name", style="cyan")
    table.add_column("Applier")
    table.add_column("Required")
    table.add_column("Lock file")
    table.add_column("Description")

    for name in sorted(profiles):
        p = profiles[name]
        table.add_row(
            p.name,
            p.trigger.describe(),
            ", ".join(p.required_paths) or "-",
            p.lock_file_name,
            p.description[:50],
        )

    console.print(table)


if __name__ == "__main__":
    main()
