"""Tests for applying backups."""

import os
import shutil
import subprocess
from pathlib import Path
from typing import List, Tuple

import pytest
from rich.console import Console

from fuxi.core import apply as apply_module
from fuxi.core.apply import ActionType, ApplyManager, ApplyReport, git_blob_hash
from fuxi.core.backup import BackupManager
from fuxi.core.config import Config, Profile, Repository
from fuxi.core.errors import ErrorKind, NoActiveProfileError, UnknownReferenceError
from fuxi.core.repository import GitRepository


@pytest.fixture
def backed_up(config: Config, repo: GitRepository, console: Console, home: Path) -> str:
    """Track the test dotfiles and back them up once; return the commit."""
    config.add_paths("main", [home / ".zshrc", home / ".config" / "git" / "config"])
    config.add_paths("main", [home / ".config" / "nvim"])
    report = BackupManager(config, repo=repo, console=console).backup(message="first")
    assert report.commit is not None
    return report.commit


@pytest.fixture
def apply_manager(config: Config, repo: GitRepository, console: Console) -> ApplyManager:
    """Create an apply manager for the test repository."""
    return ApplyManager(config, repo=repo, console=console)


def summary(report: ApplyReport) -> List[Tuple[Path, ActionType]]:
    """Return the (destination, action) pairs of a report."""
    return [(action.destination, action.action) for action in report.actions]


def test_blob_hash_matches_git(tmp_path: Path) -> None:
    """Test that content hashes agree with git's object ids."""
    path = tmp_path / "file"
    path.write_bytes(b"hello\n")
    expected = subprocess.run(
        ["git", "hash-object", str(path)], capture_output=True, text=True, check=True
    ).stdout.strip()
    assert git_blob_hash(b"hello\n") == expected


def test_apply_unchanged(apply_manager: ApplyManager, backed_up: str) -> None:
    """Test that applying onto identical files changes nothing."""
    report = apply_manager.apply("latest")
    assert report.commit == backed_up
    assert len(report.actions) == 4
    assert all(action.action == ActionType.NOOP for action in report.actions)
    assert not report.failed


def test_dry_run_matches_real_run(
    apply_manager: ApplyManager, backed_up: str, home: Path
) -> None:
    """Test that a dry run plans exactly what the real run then does."""
    (home / ".zshrc").unlink()
    (home / ".config" / "git" / "config").write_text("[user]\n\tname = Someone Else\n")

    dry = apply_manager.apply("latest", dry_run=True)
    assert not (home / ".zshrc").exists()
    assert "Someone Else" in (home / ".config" / "git" / "config").read_text()

    real = apply_manager.apply("latest")
    assert summary(dry) == summary(real)
    assert dict(summary(real)) == {
        home / ".config" / "git" / "config": ActionType.OVERWRITE,
        home / ".config" / "nvim" / "init.lua": ActionType.NOOP,
        home / ".config" / "nvim" / "lua" / "plugins.lua": ActionType.NOOP,
        home / ".zshrc": ActionType.CREATE,
    }
    assert (home / ".zshrc").read_text() == "export EDITOR=vim\n"
    assert (home / ".config" / "git" / "config").read_text() == "[user]\n\tname = Test User\n"


def test_dry_run_output(apply_manager: ApplyManager, backed_up: str, home: Path) -> None:
    """Test the dry run report lines."""
    (home / ".zshrc").unlink()
    apply_manager.apply("latest", dry_run=True)
    output = apply_manager.console.file.getvalue()
    assert f"[Dry Run] Would create: {home / '.zshrc'}" in output
    assert f"[Dry Run] Would no-op: {home / '.config' / 'nvim' / 'init.lua'}" in output


def test_actions_ordered_by_repository_path(apply_manager: ApplyManager, backed_up: str) -> None:
    """Test that actions follow repository path order."""
    report = apply_manager.apply("latest", dry_run=True)
    paths = [str(action.repo_path) for action in report.actions]
    assert paths == sorted(paths)


def test_apply_older_backup_by_prefix(
    apply_manager: ApplyManager,
    config: Config,
    repo: GitRepository,
    console: Console,
    backed_up: str,
    home: Path,
) -> None:
    """Test restoring an older backup by its short id."""
    (home / ".zshrc").write_text("export EDITOR=nano\n")
    BackupManager(config, repo=repo, console=console).backup(message="second")

    report = apply_manager.apply(backed_up[:7])
    assert report.commit == backed_up
    assert (home / ".zshrc").read_text() == "export EDITOR=vim\n"


def test_apply_unknown_reference(apply_manager: ApplyManager, backed_up: str) -> None:
    """Test applying a reference that does not exist."""
    with pytest.raises(UnknownReferenceError):
        apply_manager.apply("0000000")


def test_apply_requires_active_profile(
    apply_manager: ApplyManager, config: Config, backed_up: str
) -> None:
    """Test that apply needs an active profile."""
    config.active_profile = None
    with pytest.raises(NoActiveProfileError):
        apply_manager.apply("latest")


def test_apply_only_active_profile(
    apply_manager: ApplyManager, config: Config, backed_up: str
) -> None:
    """Test that another profile sees none of the stored files."""
    config.create_profile("work")
    config.switch_profile("work")
    report = apply_manager.apply("latest")
    assert report.actions == []


def test_failed_file_does_not_stop_apply(
    apply_manager: ApplyManager, backed_up: str, home: Path
) -> None:
    """Test that one unwritable destination is reported and the rest are applied."""
    (home / ".zshrc").unlink()
    git_dir = home / ".config" / "git"
    (git_dir / "config").unlink()
    git_dir.rmdir()
    git_dir.write_text("not a directory")

    report = apply_manager.apply("latest")
    assert report.failed
    assert [action.destination for action in report.failures] == [git_dir / "config"]
    assert report.failures[0].error == ErrorKind.PARTIAL_COPY_FAILURE
    assert (home / ".zshrc").read_text() == "export EDITOR=vim\n"


@pytest.mark.skipif(os.name == "nt", reason="POSIX file modes")
def test_apply_restores_executable_bit(
    config: Config, repo: GitRepository, console: Console, home: Path
) -> None:
    """Test that executable scripts come back executable."""
    script = home / "bin" / "hello"
    script.parent.mkdir()
    script.write_text("#!/bin/sh\necho hello\n")
    script.chmod(0o755)
    config.add_paths("main", [script])
    BackupManager(config, repo=repo, console=console).backup()

    script.unlink()
    ApplyManager(config, repo=repo, console=console).apply("latest")
    assert os.access(script, os.X_OK)


def test_apply_from_remote(
    config: Config,
    repo: GitRepository,
    remote_repo: Path,
    console: Console,
    backed_up: str,
    home: Path,
    tmp_path: Path,
) -> None:
    """Test applying on a machine whose clone has not seen the backup yet."""
    repo.push()
    other = GitRepository(tmp_path / "other")
    other.init(str(remote_repo))
    other_config = Config(
        repository=Repository(remote=str(remote_repo), local_path=other.path),
        active_profile="main",
        profiles=[Profile(name="main", paths=list(config.active().paths))],
    )
    (home / ".zshrc").unlink()

    report = ApplyManager(other_config, repo=other, console=console).apply("latest")
    assert report.commit == backed_up
    assert (home / ".zshrc").read_text() == "export EDITOR=vim\n"
    assert other.rev_parse("HEAD") == backed_up


def test_dry_run_leaves_clone_untouched(
    config: Config,
    repo: GitRepository,
    remote_repo: Path,
    console: Console,
    backed_up: str,
    tmp_path: Path,
) -> None:
    """Test that a dry run fetches but does not update the local branch."""
    repo.push()
    other = GitRepository(tmp_path / "other")
    other.init(str(remote_repo))
    other_config = Config(
        repository=Repository(remote=str(remote_repo), local_path=other.path),
        active_profile="main",
        profiles=[Profile(name="main")],
    )

    report = ApplyManager(other_config, repo=other, console=console).apply(
        "latest", dry_run=True
    )
    assert report.commit == backed_up
    assert not other.has_commits()


@pytest.fixture
def unwritable_zshrc(home: Path, monkeypatch: pytest.MonkeyPatch) -> List[Tuple[Path, Path]]:
    """Make writing ~/.zshrc fail with a permission error.

    Returns the list that records privileged copies.
    """
    real_write_file = apply_module.write_file
    sudo_calls: List[Tuple[Path, Path]] = []

    def write_file(destination: Path, content: bytes, executable: bool = False) -> None:
        if destination == home / ".zshrc":
            raise PermissionError(13, "Permission denied", str(destination))
        real_write_file(destination, content, executable)

    def fake_sudo_copy(source: Path, destination: Path) -> None:
        sudo_calls.append((source, destination))
        shutil.copyfile(source, destination)

    monkeypatch.setattr(apply_module, "write_file", write_file)
    monkeypatch.setattr(apply_module, "sudo_copy", fake_sudo_copy)
    return sudo_calls


@pytest.mark.skipif(os.name != "posix", reason="sudo retries are POSIX only")
def test_permission_error_retried_with_sudo(
    config: Config,
    repo: GitRepository,
    console: Console,
    backed_up: str,
    home: Path,
    unwritable_zshrc: List[Tuple[Path, Path]],
) -> None:
    """Test that a confirmed privileged retry writes the stored content."""
    (home / ".zshrc").write_text("export EDITOR=nano\n")
    prompts: List[str] = []

    def accept(prompt: str) -> bool:
        prompts.append(prompt)
        return True

    report = ApplyManager(config, repo=repo, console=console, confirm_sudo=accept).apply("latest")

    assert not report.failed
    assert len(prompts) == 1
    assert [destination for _, destination in unwritable_zshrc] == [home / ".zshrc"]
    assert (home / ".zshrc").read_text() == "export EDITOR=vim\n"


def test_permission_error_declined(
    config: Config,
    repo: GitRepository,
    console: Console,
    backed_up: str,
    home: Path,
    unwritable_zshrc: List[Tuple[Path, Path]],
) -> None:
    """Test that a declined retry is recorded and the other files still apply."""
    (home / ".zshrc").write_text("export EDITOR=nano\n")
    (home / ".config" / "git" / "config").unlink()
    manager = ApplyManager(config, repo=repo, console=console, confirm_sudo=lambda prompt: False)
    report = manager.apply("latest")

    assert [action.destination for action in report.failures] == [home / ".zshrc"]
    assert unwritable_zshrc == []
    assert (home / ".zshrc").read_text() == "export EDITOR=nano\n"
    assert (home / ".config" / "git" / "config").is_file()
