# SubVault: Core Module - Shared Utilities
#
# Core module provides functionality shared by the vault and its HTTP/CLI
# surfaces:
# - Audit logging
# - Configuration

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    configure_audit_logger,
    get_audit_logger,
    log_security_event,
)
from .config import Settings, load_settings

__all__ = [
    # Audit Logging
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "configure_audit_logger",
    "get_audit_logger",
    "log_security_event",
    # Configuration
    "Settings",
    "load_settings",
]
