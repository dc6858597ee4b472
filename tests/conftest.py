"""
Shared pytest fixtures for the SubVault test suite.

The autouse fixture below isolates tests from the live application data:
  - Audit logger -> temp directory (prevents test events in ./audit_logs)
"""

import pytest


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test.

    Without this, any test that (directly or indirectly) calls
    ``get_audit_logger().log_event(...)`` writes into the real
    ``./audit_logs/`` directory.
    """
    import subvault.core.audit_log as audit_mod

    # Reset the singleton so the next call to get_audit_logger() creates
    # a fresh instance pointing at the temp directory.
    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    audit_mod._audit_logger = old_logger


@pytest.fixture
def store():
    from subvault.vault import MemoryBlobStore

    return MemoryBlobStore()


@pytest.fixture
def manager(store):
    from subvault.vault import VaultManager

    return VaultManager(store=store)


@pytest.fixture
def unlocked(manager):
    """A freshly created, unlocked vault."""
    result = manager.unlock("correct-horse")
    assert result.success
    return manager
