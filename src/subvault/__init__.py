# SubVault - Main Package
#
# Personal vault for login credentials and recurring subscriptions,
# sealed under a single master passphrase.

__version__ = "0.3.0"
__author__ = "SubVault Team"
__description__ = "Encrypted vault for credentials and subscriptions"

from .core import (
    EventType,
    EventSeverity,
    get_audit_logger,
    load_settings,
)
from .vault import VaultManager, FileBlobStore

__all__ = [
    "__version__",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "load_settings",
    "VaultManager",
    "FileBlobStore",
]
