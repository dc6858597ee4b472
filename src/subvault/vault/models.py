# SubVault: Vault - Data Model
#
# Record types held inside the sealed blob. Snapshots are frozen: every
# mutation builds a new VaultData with dataclasses.replace().
#
# Wire format (camelCase keys, matching blobs written by the web client):
#   {"credentials": [...], "subscriptions": [...], "lastUpdated": <ms>}

import json
import time
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .encryption import EncryptionService

PERMANENT_RENEWAL = date(9999, 12, 31)


def now_ms() -> int:
    """Current time as unix milliseconds."""
    return int(time.time() * 1000)


class FrequencyUnit(str, Enum):
    """Billing period unit of a subscription."""
    DAYS = "DAYS"
    WEEKS = "WEEKS"
    MONTHS = "MONTHS"
    YEARS = "YEARS"
    PERMANENT = "PERMANENT"


def _decimal_to_json(value: Decimal) -> int | float:
    """
    JSON number for a cost. Non-integral values go through float, which is
    exact only up to 15 significant digits; costs are validated against that
    limit before they reach a snapshot.
    """
    if value == value.to_integral_value():
        return int(value)
    return float(value)


@dataclass(frozen=True)
class Credential:
    """A stored login. Identity is ``id``."""

    id: str
    label: str
    username: str
    password: Optional[str] = None
    notes: Optional[str] = None
    created_at: int = 0

    def to_dict(self, include_secret: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "label": self.label,
            "username": self.username,
            "createdAt": self.created_at,
        }
        if self.password is not None and include_secret:
            data["password"] = self.password
        if self.notes is not None:
            data["notes"] = self.notes
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credential":
        return cls(
            id=str(data["id"]),
            label=str(data.get("label", "")),
            username=str(data.get("username", "")),
            password=data.get("password") or None,
            notes=data.get("notes") or None,
            created_at=int(data.get("createdAt") or 0),
        )


@dataclass(frozen=True)
class Subscription:
    """
    A recurring (or one-off PERMANENT) payment.

    ``renewal_date`` is derived from start date and frequency by the vault
    manager; it is stored so blobs stay readable by other clients.
    ``credential_id`` is a relation by identifier only, it may point at
    nothing until checked against the credential collection.
    """

    id: str
    name: str
    cost: Decimal
    currency: str
    frequency_amount: int
    frequency_unit: FrequencyUnit
    start_date: date
    renewal_date: date
    category: str
    credential_id: Optional[str] = None
    website: Optional[str] = None
    active: bool = True

    @property
    def is_permanent(self) -> bool:
        return self.frequency_unit == FrequencyUnit.PERMANENT

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "cost": _decimal_to_json(self.cost),
            "currency": self.currency,
            "frequencyAmount": self.frequency_amount,
            "frequencyUnit": self.frequency_unit.value,
            "startDate": self.start_date.isoformat(),
            "renewalDate": self.renewal_date.isoformat(),
            "category": self.category,
            "active": self.active,
        }
        if self.credential_id:
            data["credentialId"] = self.credential_id
        if self.website:
            data["website"] = self.website
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subscription":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            cost=Decimal(str(data.get("cost", 0))),
            currency=str(data.get("currency") or "CNY"),
            frequency_amount=int(data.get("frequencyAmount") or 1),
            frequency_unit=FrequencyUnit(data.get("frequencyUnit") or "MONTHS"),
            start_date=date.fromisoformat(data["startDate"]),
            renewal_date=date.fromisoformat(data["renewalDate"]),
            category=str(data.get("category") or ""),
            credential_id=data.get("credentialId") or None,
            website=data.get("website") or None,
            active=bool(data.get("active", True)),
        )


def _check_unique_ids(collection: str, records) -> None:
    seen = set()
    for record in records:
        if record.id in seen:
            raise ValueError(f"Duplicate id in {collection}: {record.id}")
        seen.add(record.id)


@dataclass(frozen=True)
class VaultData:
    """Aggregate root: one immutable snapshot of the vault contents."""

    credentials: Tuple[Credential, ...] = field(default_factory=tuple)
    subscriptions: Tuple[Subscription, ...] = field(default_factory=tuple)
    last_updated: int = 0

    @classmethod
    def empty(cls, last_updated: Optional[int] = None) -> "VaultData":
        return cls(last_updated=now_ms() if last_updated is None else last_updated)

    def find_credential(self, credential_id: Optional[str]) -> Optional[Credential]:
        if not credential_id:
            return None
        return next((c for c in self.credentials if c.id == credential_id), None)

    def find_subscription(self, subscription_id: str) -> Optional[Subscription]:
        return next((s for s in self.subscriptions if s.id == subscription_id), None)

    def subscriptions_for(self, credential_id: str) -> Tuple[Subscription, ...]:
        """Subscriptions whose weak reference points at ``credential_id``."""
        return tuple(s for s in self.subscriptions if s.credential_id == credential_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "credentials": [c.to_dict() for c in self.credentials],
            "subscriptions": [s.to_dict() for s in self.subscriptions],
            "lastUpdated": self.last_updated,
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VaultData":
        """
        Raises:
            ValueError: A collection holds the same id twice
        """
        credentials = tuple(Credential.from_dict(c) for c in data.get("credentials") or [])
        subscriptions = tuple(Subscription.from_dict(s) for s in data.get("subscriptions") or [])
        _check_unique_ids("credentials", credentials)
        _check_unique_ids("subscriptions", subscriptions)
        return cls(
            credentials=credentials,
            subscriptions=subscriptions,
            last_updated=int(data.get("lastUpdated") or 0),
        )

    @classmethod
    def from_bytes(cls, raw: bytes) -> "VaultData":
        """
        Decode an unsealed payload.

        Raises:
            ValueError: If the payload is not a vault document
        """
        try:
            obj = json.loads(raw.decode("utf-8"))
            if not isinstance(obj, dict):
                raise ValueError("Vault payload is not an object")
            return cls.from_dict(obj)
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError,
                InvalidOperation) as e:
            raise ValueError(f"Malformed vault payload: {e}") from e


@dataclass(frozen=True)
class EncryptedBlob:
    """The persisted form of the vault: the only thing written to storage."""

    salt: bytes
    iv: bytes
    ciphertext: bytes

    def to_dict(self) -> Dict[str, str]:
        return {
            "salt": EncryptionService.encode_for_storage(self.salt),
            "iv": EncryptionService.encode_for_storage(self.iv),
            "data": EncryptionService.encode_for_storage(self.ciphertext),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Any) -> "EncryptedBlob":
        """
        Parse the ``{"salt", "iv", "data"}`` record.

        Raises:
            ValueError: Missing fields, bad base64 or wrong salt/iv length
        """
        if not isinstance(data, dict):
            raise ValueError("Encrypted blob must be a JSON object")
        missing = [k for k in ("salt", "iv", "data") if not isinstance(data.get(k), str)]
        if missing:
            raise ValueError(f"Encrypted blob missing fields: {', '.join(missing)}")

        salt = EncryptionService.decode_from_storage(data["salt"])
        iv = EncryptionService.decode_from_storage(data["iv"])
        ciphertext = EncryptionService.decode_from_storage(data["data"])

        if len(salt) != EncryptionService.SALT_LENGTH:
            raise ValueError("Encrypted blob has an invalid salt length")
        if len(iv) != EncryptionService.NONCE_LENGTH:
            raise ValueError("Encrypted blob has an invalid iv length")
        return cls(salt=salt, iv=iv, ciphertext=ciphertext)

    @classmethod
    def from_json(cls, text: str | bytes) -> "EncryptedBlob":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Encrypted blob is not valid JSON: {e}") from e
        return cls.from_dict(data)
