"""gitferry - relay git objects between two smart-HTTP remotes."""

__version__ = "0.1.0"

from gitferry.api import sync_remotes

__all__ = ["__version__", "sync_remotes"]
