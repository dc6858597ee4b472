# SubVault: Vault Module - Encrypted Credential & Subscription Store
#
# One sealed JSON blob per vault:
# PBKDF2-SHA256 key derivation + AES-256-GCM authenticated encryption.

from .encryption import EncryptionService
from .errors import (
    AuthenticationFailed,
    PersistenceFailed,
    RecordNotFound,
    ValidationFailed,
    VaultError,
    VaultLocked,
)
from .models import (
    PERMANENT_RENEWAL,
    Credential,
    EncryptedBlob,
    FrequencyUnit,
    Subscription,
    VaultData,
)
from .operations import (
    CreateCredential,
    CreateSubscription,
    DeleteCredential,
    DeleteSubscription,
    UpdateCredential,
    UpdateSubscription,
    VaultOperation,
)
from .storage import BlobStore, FileBlobStore, MemoryBlobStore
from .vault_manager import VaultManager, VaultResult, VaultState

__all__ = [
    "EncryptionService",
    "VaultManager",
    "VaultResult",
    "VaultState",
    # Records
    "Credential",
    "Subscription",
    "VaultData",
    "EncryptedBlob",
    "FrequencyUnit",
    "PERMANENT_RENEWAL",
    # Operations
    "VaultOperation",
    "CreateCredential",
    "UpdateCredential",
    "DeleteCredential",
    "CreateSubscription",
    "UpdateSubscription",
    "DeleteSubscription",
    # Storage
    "BlobStore",
    "FileBlobStore",
    "MemoryBlobStore",
    # Errors
    "VaultError",
    "AuthenticationFailed",
    "ValidationFailed",
    "RecordNotFound",
    "VaultLocked",
    "PersistenceFailed",
]
