"""Command line interface for fuxi."""

from collections import Counter
from pathlib import Path
from typing import List, NoReturn, Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from . import __version__
from .core.apply import ActionType, ApplyManager
from .core.backup import BackupManager, open_repository
from .core.config import (
    DEFAULT_BRANCH,
    Config,
    ConfigStore,
    PathResult,
    Repository,
    default_config_path,
    normalize_path,
)
from .core.errors import FuxiError
from .core.logging import setup_logging
from .core.repository import GitRepository
from .core.save import SaveManager

console = Console(soft_wrap=True)


def fail(message: str) -> NoReturn:
    """Print an error and abort the command with a non-zero exit code."""
    console.print(f"[red]Error: {escape(message)}")
    raise click.Abort()


def ask(prompt: str) -> bool:
    """Ask a yes/no question, defaulting to no."""
    return click.confirm(prompt, default=False)


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="FUXI_CONFIG",
    help="Configuration file to use (defaults to config.yaml in the user config directory)",
)
@click.option("--debug", is_flag=True, help="Show debug logging")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write logs to this file")
@click.pass_context
def cli(
    ctx: click.Context, config_path: Optional[Path], debug: bool, log_file: Optional[str]
) -> None:
    """Dotfiles backup tool.

    fuxi mirrors a set of files and directories into a git repository and
    restores them on demand. Paths are grouped in profiles; one profile is
    active at a time.

    Main commands:

      init      Set up the backup repository
      profile   Manage profiles
      path      Manage the paths tracked by a profile
      backup    Copy tracked paths into the repository and commit
      save      Commit and push changes made inside the repository
      list      List backups
      apply     Restore a backup to the original locations

    Run 'fuxi COMMAND --help' for more information on a specific command.
    """
    setup_logging(debug=debug, log_file=log_file)
    ctx.obj = ConfigStore(config_path)


def load_config(store: ConfigStore, missing_ok: bool = False) -> Config:
    """Load the configuration, aborting with a message on failure."""
    try:
        return store.load_or_default() if missing_ok else store.load()
    except FuxiError as e:
        fail(str(e))


def save_config(store: ConfigStore, config: Config) -> None:
    """Persist the configuration, aborting with a message on failure."""
    try:
        store.save(config)
    except FuxiError as e:
        fail(str(e))


@cli.command()
def version() -> None:
    """Show version information."""
    console.print(f"fuxi version {__version__}")


@cli.command("config")
@click.option("--raw", "-r", is_flag=True, help="Output just the file path")
@click.pass_obj
def config_command(store: ConfigStore, raw: bool) -> None:
    """Show the configuration file location."""
    if raw:
        click.echo(str(store.path))
    else:
        console.print(f"Configuration file: {escape(str(store.path))}")
        if store.path != default_config_path():
            console.print(f"Default location: {escape(str(default_config_path()))}")


@cli.command()
@click.argument("repo")
@click.argument("path", type=click.Path(file_okay=False, path_type=Path))
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
def init(store: ConfigStore, repo: str, path: Path, yes: bool) -> None:
    """Initialize the git backup repository.

    REPO is the GitHub repository (username/repo-name) or any git URL.

    PATH is where the local clone lives. It is created and git-initialized
    if it does not exist.

    Example:

      fuxi init user/dotfiles ~/.dotbak
    """
    config = load_config(store, missing_ok=True)
    if not yes and not click.confirm(
        "This will initialize a new Git repository at the specified path. "
        "Continue?",
        default=False,
    ):
        console.print("Initialization cancelled.")
        return

    local_path = normalize_path(path)
    branch = config.repository.branch if config.repository else DEFAULT_BRANCH
    settings = Repository(remote=repo, local_path=local_path, branch=branch)
    try:
        GitRepository(local_path, branch=branch).init(settings.remote_url)
    except FuxiError as e:
        fail(str(e))
    config.repository = settings
    save_config(store, config)
    console.print(
        f"Backups will use the {escape(repo)} repository at {escape(str(local_path))}"
    )


@cli.group()
def profile() -> None:
    """Manage profiles."""


@profile.command("list")
@click.pass_obj
def profile_list(store: ConfigStore) -> None:
    """List all profiles and their paths."""
    config = load_config(store, missing_ok=True)
    if not config.profiles:
        console.print("[yellow]No profiles found.")
        return
    for item in config.profiles:
        marker = " [green](active)[/]" if item.name == config.active_profile else ""
        tree = Tree(f"[bold magenta]{escape(item.name)}[/]{marker}")
        for tracked in item.paths:
            tree.add(f"{escape(str(tracked.source))} [dim]{tracked.kind.value}[/]")
        console.print(tree)


@profile.command("create")
@click.argument("name")
@click.pass_obj
def profile_create(store: ConfigStore, name: str) -> None:
    """Create a new profile.

    The first profile created becomes the active profile.
    """
    config = load_config(store, missing_ok=True)
    try:
        config.create_profile(name)
    except (FuxiError, ValueError) as e:
        fail(str(e))
    save_config(store, config)
    console.print(f"Profile '{escape(name)}' created.")
    if config.active_profile == name:
        console.print(f"Profile '{escape(name)}' is now the active profile.")


@profile.command("switch")
@click.argument("name")
@click.pass_obj
def profile_switch(store: ConfigStore, name: str) -> None:
    """Switch to a profile."""
    config = load_config(store)
    try:
        config.switch_profile(name)
    except FuxiError as e:
        fail(str(e))
    save_config(store, config)
    console.print(f"Switched to profile '{escape(name)}'.")


@profile.command("delete")
@click.argument("name")
@click.pass_obj
def profile_delete(store: ConfigStore, name: str) -> None:
    """Delete a profile.

    Deleting the active profile leaves no profile active until you switch to
    another one.
    """
    config = load_config(store)
    was_active = config.active_profile == name
    try:
        config.delete_profile(name)
    except FuxiError as e:
        fail(str(e))
    save_config(store, config)
    console.print(f"Profile '{escape(name)}' deleted.")
    if was_active:
        console.print(
            "[yellow]No profile is active now. Select one with 'fuxi profile switch NAME'."
        )


@cli.group()
def path() -> None:
    """Manage tracked paths."""


def target_profile(config: Config, name: Optional[str]) -> str:
    """Return the profile a path command works on."""
    try:
        return config.profile(name).name if name else config.active().name
    except FuxiError as e:
        fail(str(e))


def report_paths(results: List[PathResult], verb: str) -> Tuple[int, int]:
    """Print per-path results and return (succeeded, failed) counts."""
    succeeded = failed = 0
    for result in results:
        if result.ok:
            succeeded += 1
            console.print(f"[green]{verb}: {escape(str(result.path))}")
        else:
            failed += 1
            kind = result.error.value if result.error else "Error"
            console.print(
                f"[red]{escape(result.message)}: {escape(str(result.path))} ({kind})"
            )
    return succeeded, failed


@path.command("list")
@click.option(
    "--profile", "-p", "profile_name", help="Profile to list (defaults to the active one)"
)
@click.pass_obj
def path_list(store: ConfigStore, profile_name: Optional[str]) -> None:
    """List tracked paths."""
    config = load_config(store)
    selected = config.profile(target_profile(config, profile_name))
    if not selected.paths:
        console.print("No paths configured.")
        return
    console.print(f"Configured paths for profile '{escape(selected.name)}':")
    for i, tracked in enumerate(selected.paths, 1):
        console.print(f"  {i}: {escape(str(tracked.source))} ({tracked.kind.value})")


@path.command("add")
@click.argument("paths", nargs=-1, required=True, type=click.Path(path_type=Path))
@click.option(
    "--profile", "-p", "profile_name", help="Profile to add to (defaults to the active one)"
)
@click.pass_obj
def path_add(store: ConfigStore, paths: Tuple[Path, ...], profile_name: Optional[str]) -> None:
    """Track path(s) in a profile.

    Each path is checked on its own; paths that do not exist or are already
    tracked are reported and the rest are still added.
    """
    config = load_config(store)
    name = target_profile(config, profile_name)
    results = config.add_paths(name, paths)
    succeeded, failed = report_paths(results, "Added")
    if succeeded:
        save_config(store, config)
        console.print("Configuration updated successfully!")
    if failed and not succeeded:
        fail("No paths were added")


@path.command("remove")
@click.argument("paths", nargs=-1, required=True, type=click.Path(path_type=Path))
@click.option(
    "--profile", "-p", "profile_name", help="Profile to remove from (defaults to the active one)"
)
@click.pass_obj
def path_remove(store: ConfigStore, paths: Tuple[Path, ...], profile_name: Optional[str]) -> None:
    """Stop tracking path(s).

    Files already stored in the backup repository are left there.
    """
    config = load_config(store)
    name = target_profile(config, profile_name)
    results = config.remove_paths(name, paths)
    succeeded, failed = report_paths(results, "Removed")
    if succeeded:
        save_config(store, config)
        console.print("Configuration updated successfully!")
    if failed and not succeeded:
        fail("No paths were removed")


@cli.command()
@click.option("--message", "-m", help="Backup commit message")
@click.option("--push", is_flag=True, help="Push to the remote after the backup")
@click.pass_obj
def backup(store: ConfigStore, message: Optional[str], push: bool) -> None:
    """Back up the active profile.

    Copies every tracked path into the backup repository and commits the
    result. Nothing is committed when nothing changed. Files deleted from a
    tracked directory are not deleted from the repository.

    When a file cannot be copied because of its permissions, you are asked
    whether to retry the copy with sudo.

    Examples:

      # Back up with a generated message
      fuxi backup

      # Back up and push to the remote
      fuxi backup -m "new zsh aliases" --push
    """
    config = load_config(store)
    try:
        manager = BackupManager(config, console=console, confirm_sudo=ask)
        report = manager.backup(message=message, push=push)
    except FuxiError as e:
        fail(str(e))
    if report.failed:
        fail("None of the tracked paths could be backed up")
    if report.failures:
        console.print(
            f"[yellow]{len(report.failures)} of {len(report.results)} tracked paths failed"
        )


@cli.command()
@click.option("--message", "-m", help="Commit message")
@click.option("--force", is_flag=True, help="Save without asking for confirmation")
@click.pass_obj
def save(store: ConfigStore, message: Optional[str], force: bool) -> None:
    """Commit and push changes in the backup repository.

    Use this after editing files directly inside the repository clone, or
    to push backups made without --push.
    """
    config = load_config(store)
    try:
        SaveManager(config, console=console).save(
            message=message,
            force=force,
            confirm=ask,
        )
    except FuxiError as e:
        fail(str(e))


@cli.command("list")
@click.pass_obj
def list_backups(store: ConfigStore) -> None:
    """List backups, newest first."""
    config = load_config(store)
    try:
        commits = open_repository(config).log()
    except FuxiError as e:
        fail(str(e))
    if not commits:
        console.print("[yellow]No backups found.")
        return

    table = Table(title="Backups")
    table.add_column("ID", style="cyan")
    table.add_column("Date", style="yellow")
    table.add_column("Message", style="green")
    for commit in commits:
        table.add_row(
            commit.short_hash,
            commit.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            escape(commit.message),
        )
    console.print(table)


@cli.command()
@click.argument("reference")
@click.option(
    "--dryrun", "-d", "dry_run", is_flag=True, help="Show what would be done without making changes"
)
@click.pass_obj
def apply(store: ConfigStore, reference: str, dry_run: bool) -> None:
    """Apply a backup to the original file locations.

    REFERENCE is 'latest', a backup ID (commit hash prefix) from 'fuxi list',
    or a full commit hash.

    Destinations you are not allowed to write, such as files under /etc, can
    be written with sudo after you confirm.

    Examples:

      # Show what applying the newest backup would change
      fuxi apply latest --dryrun

      # Apply a specific backup
      fuxi apply 3f2a9c1
    """
    config = load_config(store)
    try:
        manager = ApplyManager(config, console=console, confirm_sudo=ask)
        report = manager.apply(reference, dry_run=dry_run)
    except FuxiError as e:
        fail(str(e))

    counts = Counter(action.action for action in report.actions)
    summary = ", ".join(
        f"{counts[kind]} {kind.value}" for kind in ActionType if counts[kind]
    ) or "no files"
    prefix = "Would apply" if dry_run else "Applied"
    console.print(f"{prefix} backup {report.commit[:7]}: {summary}")

    if report.failed:
        fail(f"{len(report.failures)} of {len(report.actions)} files could not be applied")


def main() -> None:
    """Entry point for the fuxi CLI."""
    cli()


if __name__ == "__main__":
    main()
