# SubVault: Vault Manager - Lifecycle Controller
#
# Owns the derived key and the plaintext vault while UNLOCKED.
# unlock -> derive key, unseal or create
# mutate -> validate, build new snapshot, seal, persist, then swap in
# lock   -> zero the key, drop the snapshot

import threading
import time
from dataclasses import dataclass
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from ..core import AuditLogger, EventSeverity, EventType, get_audit_logger
from .encryption import EncryptionService
from .errors import (
    AuthenticationFailed,
    PersistenceFailed,
    ValidationFailed,
    VaultError,
    VaultLocked,
)
from .models import Credential, EncryptedBlob, Subscription, VaultData, now_ms
from .operations import (
    CreateCredential,
    CreateSubscription,
    DeleteCredential,
    DeleteSubscription,
    UpdateCredential,
    UpdateSubscription,
    VaultOperation,
)
from .schedule import SpendingSummary, spending_summary
from .storage import BlobStore, export_filename


class VaultState(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


@dataclass(frozen=True)
class VaultResult:
    """
    Outcome of a controller call.

    On success ``vault`` is the current snapshot. On failure ``error`` says
    why and ``vault`` is the snapshot that is still in effect (None while
    locked).
    """

    success: bool
    vault: Optional[VaultData] = None
    error: Optional[VaultError] = None
    record_id: Optional[str] = None

    @property
    def message(self) -> str:
        return self.error.message if self.error else "OK"

    @property
    def retryable(self) -> bool:
        return bool(self.error and self.error.retryable)


class VaultManager:
    """
    Single owner of the unlocked vault.

    Security:
    - Master passphrase never stored (only the salt, inside the blob)
    - Derived key kept in a bytearray and zeroed on lock()
    - Wrong passphrase and corrupted blob are reported identically
    - Failed unlocks are rate limited with exponential backoff
    - Audit logging for all vault access (no secrets in the log)

    Calls are serialized through an internal lock, so one mutation
    (including its persist step) completes before the next starts.

    Policy when the store rejects a save: the in-memory snapshot is rolled
    back to the last persisted one and the error is marked retryable.
    """

    def __init__(
        self,
        store: BlobStore,
        logger: Optional[AuditLogger] = None,
        max_unlock_backoff: int = 16,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize vault manager.

        Args:
            store: Storage collaborator holding the sealed blob
            logger: Audit logger (default: global audit logger)
            max_unlock_backoff: Upper bound (seconds) for unlock lockout
            clock: Monotonic clock used for the unlock lockout
        """
        self.store = store
        self.logger = logger or get_audit_logger()
        self.max_unlock_backoff = max_unlock_backoff
        self._clock = clock

        self._mutex = threading.RLock()
        self._key: Optional[bytearray] = None
        self._salt: Optional[bytes] = None
        self._vault: Optional[VaultData] = None

        # Rate limiting for unlock attempts (prevent brute force)
        self.failed_attempts = 0
        self.lockout_until: Optional[float] = None

    # ── State ──────────────────────────────────────────────────────

    @property
    def state(self) -> VaultState:
        return VaultState.UNLOCKED if self._vault is not None else VaultState.LOCKED

    @property
    def is_unlocked(self) -> bool:
        return self._vault is not None

    @property
    def vault(self) -> Optional[VaultData]:
        """Current snapshot, or None while locked. Snapshots are immutable."""
        return self._vault

    def vault_exists(self) -> bool:
        try:
            return self.store.load() is not None
        except ValueError:
            # Present but unreadable still counts as an existing vault
            return True

    # ── Unlock / lock ──────────────────────────────────────────────

    def unlock(self, passphrase: str) -> VaultResult:
        """
        Unlock the vault, creating it on first use.

        Calling unlock while already unlocked re-authenticates against the
        stored blob. A failed re-authentication locks the vault.
        """
        with self._mutex:
            if not passphrase:
                return self._fail(ValidationFailed("Passphrase is required", field="passphrase"))

            if self.lockout_until is not None and self._clock() < self.lockout_until:
                remaining = max(1, int(self.lockout_until - self._clock() + 0.999))
                self.logger.log_event(
                    event_type=EventType.VAULT_UNLOCK_FAILED,
                    severity=EventSeverity.ALERT,
                    message=f"Unlock attempt during lockout period ({remaining}s remaining)"
                )
                return self._fail(AuthenticationFailed(
                    f"Too many failed attempts. Please wait {remaining} seconds."
                ))

            try:
                blob = self.store.load()
            except ValueError:
                self._discard()
                return self._handle_failed_unlock()
            except Exception as e:
                self.logger.log_event(
                    event_type=EventType.VAULT_ERROR,
                    severity=EventSeverity.CRITICAL,
                    message=f"Vault storage could not be read: {type(e).__name__}"
                )
                return self._fail(PersistenceFailed("Vault storage could not be read, please retry"))

            if blob is None:
                return self._initialize(passphrase)

            key = bytearray(EncryptionService.derive_key(passphrase, blob.salt))
            try:
                plaintext = EncryptionService.unseal(blob.ciphertext, key, blob.iv)
                vault = VaultData.from_bytes(plaintext)
            except (AuthenticationFailed, ValueError):
                _zero(key)
                self._discard()
                return self._handle_failed_unlock()

            self._discard()
            self._key = key
            self._salt = blob.salt
            self._vault = vault

            self.failed_attempts = 0
            self.lockout_until = None

            self.logger.log_event(
                event_type=EventType.VAULT_UNLOCKED,
                severity=EventSeverity.INFO,
                message="Vault unlocked successfully",
                details={
                    "credentials": len(vault.credentials),
                    "subscriptions": len(vault.subscriptions),
                }
            )
            return VaultResult(success=True, vault=vault)

    def _initialize(self, passphrase: str) -> VaultResult:
        """First unlock with no stored blob: create, seal and persist an empty vault."""
        salt = EncryptionService.generate_salt()
        key = bytearray(EncryptionService.derive_key(passphrase, salt))
        vault = VaultData.empty()

        try:
            self._write(vault, key, salt)
        except PersistenceFailed as e:
            _zero(key)
            self.logger.log_event(
                event_type=EventType.VAULT_ERROR,
                severity=EventSeverity.CRITICAL,
                message=f"Failed to initialize vault: {e.message}"
            )
            return self._fail(e)

        self._discard()
        self._key = key
        self._salt = salt
        self._vault = vault
        self.failed_attempts = 0
        self.lockout_until = None

        self.logger.log_event(
            event_type=EventType.VAULT_CREATED,
            severity=EventSeverity.INFO,
            message="Vault initialized with master passphrase"
        )
        return VaultResult(success=True, vault=vault)

    def _handle_failed_unlock(self) -> VaultResult:
        """Rate-limited failure response for wrong passphrase attempts."""
        self.failed_attempts += 1
        if self.failed_attempts == 1:
            delay_seconds = 0
        else:
            delay_seconds = min(2 ** (self.failed_attempts - 1), self.max_unlock_backoff)
        self.lockout_until = self._clock() + delay_seconds if delay_seconds else None

        self.logger.log_event(
            event_type=EventType.VAULT_UNLOCK_FAILED,
            severity=EventSeverity.ALERT,
            message=f"Vault unlock failed (attempt {self.failed_attempts}, {delay_seconds}s lockout)"
        )
        return self._fail(AuthenticationFailed())

    def lock(self) -> VaultResult:
        """Discard key and plaintext. Safe to call at any time."""
        with self._mutex:
            was_unlocked = self.is_unlocked
            self._discard()
            if was_unlocked:
                self.logger.log_event(
                    event_type=EventType.VAULT_LOCKED,
                    severity=EventSeverity.INFO,
                    message="Vault locked"
                )
            return VaultResult(success=True)

    def _discard(self) -> None:
        if self._key is not None:
            _zero(self._key)
        self._key = None
        self._salt = None
        self._vault = None

    # ── Mutation ───────────────────────────────────────────────────

    def mutate(self, operation: VaultOperation) -> VaultResult:
        """
        Apply one operation, persist the new snapshot, then make it current.

        Either both storage and memory move to the new snapshot, or neither
        does.
        """
        with self._mutex:
            if not self.is_unlocked:
                return self._fail(VaultLocked())

            try:
                new_vault, record_id = operation.apply(self._vault, now_ms(), date.today())
            except ValidationFailed as e:
                self.logger.log_event(
                    event_type=EventType.VAULT_ERROR,
                    severity=EventSeverity.INVESTIGATE,
                    message=f"Rejected {type(operation).__name__}: {e.message}",
                    details={"field": e.field} if e.field else None
                )
                return self._fail(e)

            try:
                self._write(new_vault, self._key, self._salt)
            except PersistenceFailed as e:
                self.logger.log_event(
                    event_type=EventType.VAULT_ERROR,
                    severity=EventSeverity.CRITICAL,
                    message=f"Failed to save vault after {type(operation).__name__}: {e.message}"
                )
                return self._fail(e)

            self._vault = new_vault
            self.logger.log_vault_event(
                event_type=operation.event_type,
                message=type(operation).__name__,
                details={"record_id": record_id}
            )
            return VaultResult(success=True, vault=new_vault, record_id=record_id)

    def _write(self, vault: VaultData, key: bytearray, salt: bytes) -> None:
        """Seal ``vault`` and hand it to the store."""
        try:
            iv, ciphertext = EncryptionService.seal(vault.to_bytes(), key)
            self.store.save(EncryptedBlob(salt=salt, iv=iv, ciphertext=ciphertext))
        except Exception as e:
            raise PersistenceFailed(f"Changes could not be saved ({type(e).__name__}), please retry") from e

    def _fail(self, error: VaultError) -> VaultResult:
        return VaultResult(success=False, vault=self._vault, error=error)

    def add_credential(self, label: str, username: str, password: Optional[str] = None,
                       notes: Optional[str] = None) -> VaultResult:
        return self.mutate(CreateCredential(label=label, username=username, password=password, notes=notes))

    def update_credential(self, credential_id: str, label: str, username: str,
                          password: Optional[str] = None, notes: Optional[str] = None) -> VaultResult:
        return self.mutate(UpdateCredential(
            credential_id=credential_id, label=label, username=username, password=password, notes=notes
        ))

    def delete_credential(self, credential_id: str) -> VaultResult:
        return self.mutate(DeleteCredential(credential_id=credential_id))

    def add_subscription(self, **fields: Any) -> VaultResult:
        return self.mutate(CreateSubscription(**fields))

    def update_subscription(self, subscription_id: str, **fields: Any) -> VaultResult:
        return self.mutate(UpdateSubscription(subscription_id=subscription_id, **fields))

    def delete_subscription(self, subscription_id: str) -> VaultResult:
        return self.mutate(DeleteSubscription(subscription_id=subscription_id))

    # ── Reads ──────────────────────────────────────────────────────

    def get_credential(self, credential_id: str) -> Optional[Credential]:
        vault = self._vault
        return vault.find_credential(credential_id) if vault else None

    def credential_for(self, subscription: Subscription) -> Optional[Credential]:
        """Resolve a subscription's weak credential reference (None if dangling)."""
        return self.get_credential(subscription.credential_id) if subscription.credential_id else None

    def summary(self, currency: Optional[str] = None) -> Optional[SpendingSummary]:
        vault = self._vault
        return spending_summary(vault.subscriptions, currency=currency) if vault else None

    # ── Export / import ────────────────────────────────────────────

    def export(self) -> Optional[str]:
        """
        Sealed blob as JSON text, exactly as stored. None if no vault exists.

        Raises:
            PersistenceFailed: The stored vault is unreadable or invalid
        """
        with self._mutex:
            try:
                blob = self.store.load()
            except Exception as e:
                self.logger.log_event(
                    event_type=EventType.VAULT_ERROR,
                    severity=EventSeverity.CRITICAL,
                    message=f"Vault storage could not be read for export: {type(e).__name__}"
                )
                raise PersistenceFailed("Vault storage could not be read, please retry") from e
            if blob is None:
                return None
            self.logger.log_vault_event(EventType.VAULT_EXPORTED, "Encrypted blob exported")
            return blob.to_json()

    def export_to(self, directory: Path) -> Optional[Path]:
        """
        Write the sealed blob to ``SubVault_Export_<ms>.json`` in ``directory``.

        Raises:
            PersistenceFailed: The stored vault is unreadable or invalid
        """
        text = self.export()
        if text is None:
            return None
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / export_filename()
        path.write_text(text, encoding="utf-8")
        return path

    def import_blob(self, text: str | bytes) -> VaultResult:
        """
        Replace the stored vault with a previously exported blob.

        The blob is only checked for shape; it is opened with the next
        unlock(). The current session is locked.
        """
        with self._mutex:
            try:
                blob = EncryptedBlob.from_json(text)
            except ValueError as e:
                return self._fail(ValidationFailed(f"Invalid backup file: {e}", field="file"))

            try:
                self.store.save(blob)
            except Exception as e:
                self.logger.log_event(
                    event_type=EventType.VAULT_ERROR,
                    severity=EventSeverity.CRITICAL,
                    message=f"Failed to import vault: {type(e).__name__}"
                )
                return self._fail(PersistenceFailed("Imported vault could not be saved, please retry"))

            self.lock()
            self.logger.log_vault_event(EventType.VAULT_IMPORTED, "Encrypted blob imported")
            return VaultResult(success=True)


def _zero(buffer: bytearray) -> None:
    for i in range(len(buffer)):
        buffer[i] = 0
