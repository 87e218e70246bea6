"""fuxi: back up dotfiles to a git repository and apply them back."""

__version__ = "0.1.0"
