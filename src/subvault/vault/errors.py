# SubVault: Vault - Error Taxonomy
#
# Every failure the lifecycle controller can report. The controller
# catches these at its boundary and hands them back inside a VaultResult.

from typing import Optional


class VaultError(Exception):
    """Base class for all vault errors."""

    kind = "vault_error"
    retryable = False
    user_message = "Vault operation failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.user_message)
        self.message = message or self.user_message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "retryable": self.retryable}


class AuthenticationFailed(VaultError):
    """Wrong passphrase or tampered/corrupted blob. The two are indistinguishable."""

    kind = "authentication_failed"
    user_message = "Invalid passphrase, try again"


class ValidationFailed(VaultError):
    """A mutation was rejected before any persistence attempt."""

    kind = "validation_failed"
    user_message = "Invalid vault data"

    def __init__(self, message: Optional[str] = None, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class RecordNotFound(ValidationFailed):
    """An update or delete named an id that is not in the vault."""

    kind = "not_found"
    user_message = "Record not found"


class VaultLocked(ValidationFailed):
    """A mutation or read was attempted while the vault is locked."""

    kind = "vault_locked"
    user_message = "Vault is locked. Unlock vault first."


class PersistenceFailed(VaultError):
    """The storage collaborator could not save the sealed blob."""

    kind = "persistence_failed"
    retryable = True
    user_message = "Changes could not be saved, please retry"
