"""Core functionality for fuxi."""

from .apply import ApplyManager
from .backup import BackupManager
from .config import Config, ConfigStore
from .repository import GitRepository
from .save import SaveManager

__all__ = ["ApplyManager", "BackupManager", "Config", "ConfigStore", "GitRepository", "SaveManager"]
