"""Test configuration."""

from __future__ import annotations

import io
import subprocess
from pathlib import Path

import pytest
from rich.console import Console

from fuxi.core.config import Config, ConfigStore, Profile, Repository
from fuxi.core.repository import GitRepository


@pytest.fixture(autouse=True)
def git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Give git an identity and keep it away from the user's own config."""
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(tmp_path / "gitconfig"))


@pytest.fixture
def console() -> Console:
    """Return a console that records output instead of printing it."""
    return Console(file=io.StringIO(), soft_wrap=True)


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """Create a fake home directory with a few dotfiles."""
    home_dir = tmp_path / "home"
    (home_dir / ".config" / "git").mkdir(parents=True)
    (home_dir / ".config" / "git" / "config").write_text("[user]\n\tname = Test User\n")
    (home_dir / ".zshrc").write_text("export EDITOR=vim\n")
    nvim_dir = home_dir / ".config" / "nvim"
    (nvim_dir / "lua").mkdir(parents=True)
    (nvim_dir / "init.lua").write_text("require('plugins')\n")
    (nvim_dir / "lua" / "plugins.lua").write_text("return {}\n")
    return home_dir


@pytest.fixture
def remote_repo(tmp_path: Path) -> Path:
    """Create a bare repository that acts as the remote."""
    remote_path = tmp_path / "remote.git"
    subprocess.run(
        ["git", "init", "--bare", str(remote_path)], check=True, capture_output=True
    )
    return remote_path


@pytest.fixture
def repo(tmp_path: Path, remote_repo: Path) -> GitRepository:
    """Create the local backup repository with the bare remote as origin."""
    git_repo = GitRepository(tmp_path / "dotbak")
    git_repo.init(str(remote_repo))
    return git_repo


@pytest.fixture
def config(repo: GitRepository, remote_repo: Path) -> Config:
    """Create a configuration with an active, empty 'main' profile."""
    return Config(
        repository=Repository(remote=str(remote_repo), local_path=repo.path),
        active_profile="main",
        profiles=[Profile(name="main")],
    )


@pytest.fixture
def store(tmp_path: Path) -> ConfigStore:
    """Return a configuration store inside the test directory."""
    return ConfigStore(tmp_path / "config" / "config.yaml")
