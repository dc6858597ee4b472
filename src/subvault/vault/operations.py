# SubVault: Vault - Mutation Operations
#
# Each operation validates its input against the current snapshot and
# returns a new snapshot. Nothing here touches storage or key material;
# the vault manager seals and persists whatever apply() returns.

import math
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Tuple

from ..core import EventType
from .errors import RecordNotFound, ValidationFailed
from .models import Credential, FrequencyUnit, Subscription, VaultData
from .schedule import next_renewal

DEFAULT_CURRENCY = "CNY"
DEFAULT_CATEGORY = "生活"


# ── Field validation ────────────────────────────────────────────────


def _require_text(value: Any, field: str) -> str:
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationFailed(f"{field} is required", field=field)
    return value.strip()


def _optional_text(value: Any, field: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationFailed(f"{field} must be text", field=field)
    return value if value.strip() else None


def _parse_cost(value: Any) -> Decimal:
    if value is None or isinstance(value, bool) or value == "":
        raise ValidationFailed("cost is required", field="cost")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationFailed("cost must be a finite number", field="cost")
    try:
        cost = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationFailed("cost must be a number", field="cost") from None
    if not cost.is_finite():
        raise ValidationFailed("cost must be a finite number", field="cost")
    if cost < 0:
        raise ValidationFailed("cost must not be negative", field="cost")
    # Costs are stored as JSON numbers, so they must survive a float round trip
    if Decimal(repr(float(cost))) != cost:
        raise ValidationFailed("cost has more digits than can be stored", field="cost")
    return cost


def _parse_amount(value: Any) -> int:
    if value is None:
        return 1
    if isinstance(value, bool):
        raise ValidationFailed("frequencyAmount must be an integer", field="frequencyAmount")
    try:
        amount = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationFailed("frequencyAmount must be an integer", field="frequencyAmount") from None
    if isinstance(value, float) and value != amount:
        raise ValidationFailed("frequencyAmount must be an integer", field="frequencyAmount")
    if amount < 1:
        raise ValidationFailed("frequencyAmount must be at least 1", field="frequencyAmount")
    return amount


def _parse_unit(value: Any) -> FrequencyUnit:
    if value is None:
        return FrequencyUnit.MONTHS
    try:
        return FrequencyUnit(str(value).upper())
    except ValueError:
        allowed = ", ".join(u.value for u in FrequencyUnit)
        raise ValidationFailed(f"frequencyUnit must be one of {allowed}", field="frequencyUnit") from None


def _parse_date(value: Any, today: date) -> date:
    if value is None or value == "":
        return today
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationFailed("startDate must be a YYYY-MM-DD date", field="startDate") from None


def _parse_currency(value: Any) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        return DEFAULT_CURRENCY
    if not isinstance(value, str):
        raise ValidationFailed("currency must be a currency code", field="currency")
    return value.strip().upper()


def _check_credential_ref(vault: VaultData, credential_id: Optional[str]) -> Optional[str]:
    if not credential_id:
        return None
    if vault.find_credential(credential_id) is None:
        raise ValidationFailed(
            f"credentialId does not reference a stored credential: {credential_id}",
            field="credentialId",
        )
    return credential_id


def _new_id(existing) -> str:
    taken = {record.id for record in existing}
    while True:
        candidate = str(uuid.uuid4())
        if candidate not in taken:
            return candidate


# ── Operations ──────────────────────────────────────────────────────


class VaultOperation(ABC):
    """Base for all mutations the vault manager accepts."""

    event_type: EventType = EventType.VAULT_ERROR

    @abstractmethod
    def apply(self, vault: VaultData, now: int, today: date) -> Tuple[VaultData, str]:
        """
        Build the next snapshot.

        Args:
            vault: Current snapshot (never modified)
            now: Timestamp (unix ms) for lastUpdated/createdAt
            today: Default start date for subscriptions

        Returns:
            (new snapshot, id of the affected record)

        Raises:
            ValidationFailed: Input rejected, snapshot unchanged
        """


@dataclass(frozen=True)
class CreateCredential(VaultOperation):
    label: str
    username: str
    password: Optional[str] = None
    notes: Optional[str] = None

    event_type = EventType.CREDENTIAL_ADDED

    def apply(self, vault, now, today):
        credential = Credential(
            id=_new_id(vault.credentials),
            label=_require_text(self.label, "label"),
            username=_require_text(self.username, "username"),
            password=_optional_text(self.password, "password"),
            notes=_optional_text(self.notes, "notes"),
            created_at=now,
        )
        return replace(vault, credentials=vault.credentials + (credential,), last_updated=now), credential.id


@dataclass(frozen=True)
class UpdateCredential(VaultOperation):
    credential_id: str
    label: str
    username: str
    password: Optional[str] = None
    notes: Optional[str] = None

    event_type = EventType.CREDENTIAL_UPDATED

    def apply(self, vault, now, today):
        current = vault.find_credential(self.credential_id)
        if current is None:
            raise RecordNotFound(f"Credential not found: {self.credential_id}", field="id")

        updated = replace(
            current,
            label=_require_text(self.label, "label"),
            username=_require_text(self.username, "username"),
            password=_optional_text(self.password, "password"),
            notes=_optional_text(self.notes, "notes"),
        )
        credentials = tuple(updated if c.id == current.id else c for c in vault.credentials)
        return replace(vault, credentials=credentials, last_updated=now), current.id


@dataclass(frozen=True)
class DeleteCredential(VaultOperation):
    """Remove a credential and clear every subscription reference to it."""

    credential_id: str

    event_type = EventType.CREDENTIAL_DELETED

    def apply(self, vault, now, today):
        if vault.find_credential(self.credential_id) is None:
            raise RecordNotFound(f"Credential not found: {self.credential_id}", field="id")

        credentials = tuple(c for c in vault.credentials if c.id != self.credential_id)
        # Referencing subscriptions are kept, only the link is dropped
        linked = {s.id for s in vault.subscriptions_for(self.credential_id)}
        subscriptions = tuple(
            replace(s, credential_id=None) if s.id in linked else s
            for s in vault.subscriptions
        )
        return replace(
            vault, credentials=credentials, subscriptions=subscriptions, last_updated=now
        ), self.credential_id


@dataclass(frozen=True)
class _SubscriptionFields:
    name: Optional[str] = None
    cost: Any = None
    currency: Optional[str] = None
    frequency_amount: Any = None
    frequency_unit: Any = None
    start_date: Any = None
    category: Optional[str] = None
    credential_id: Optional[str] = None
    website: Optional[str] = None
    active: bool = True
    # Accepted for wire compatibility; always recomputed from the fields above
    renewal_date: Any = None

    def build(self, vault: VaultData, subscription_id: str, today: date) -> Subscription:
        name = _require_text(self.name, "name")
        cost = _parse_cost(self.cost)
        amount = _parse_amount(self.frequency_amount)
        unit = _parse_unit(self.frequency_unit)
        start = _parse_date(self.start_date, today)
        return Subscription(
            id=subscription_id,
            name=name,
            cost=cost,
            currency=_parse_currency(self.currency),
            frequency_amount=amount,
            frequency_unit=unit,
            start_date=start,
            renewal_date=next_renewal(start, amount, unit),
            category=_optional_text(self.category, "category") or DEFAULT_CATEGORY,
            credential_id=_check_credential_ref(vault, self.credential_id),
            website=_optional_text(self.website, "website"),
            active=bool(self.active),
        )


@dataclass(frozen=True)
class CreateSubscription(_SubscriptionFields, VaultOperation):
    event_type = EventType.SUBSCRIPTION_ADDED

    def apply(self, vault, now, today):
        subscription = self.build(vault, _new_id(vault.subscriptions), today)
        return replace(
            vault, subscriptions=vault.subscriptions + (subscription,), last_updated=now
        ), subscription.id


@dataclass(frozen=True)
class UpdateSubscription(_SubscriptionFields, VaultOperation):
    """Replace every editable field of an existing subscription."""

    subscription_id: str = ""

    event_type = EventType.SUBSCRIPTION_UPDATED

    def apply(self, vault, now, today):
        if vault.find_subscription(self.subscription_id) is None:
            raise RecordNotFound(f"Subscription not found: {self.subscription_id}", field="id")

        updated = self.build(vault, self.subscription_id, today)
        subscriptions = tuple(updated if s.id == updated.id else s for s in vault.subscriptions)
        return replace(vault, subscriptions=subscriptions, last_updated=now), updated.id


@dataclass(frozen=True)
class DeleteSubscription(VaultOperation):
    subscription_id: str

    event_type = EventType.SUBSCRIPTION_DELETED

    def apply(self, vault, now, today):
        if vault.find_subscription(self.subscription_id) is None:
            raise RecordNotFound(f"Subscription not found: {self.subscription_id}", field="id")

        subscriptions = tuple(s for s in vault.subscriptions if s.id != self.subscription_id)
        return replace(vault, subscriptions=subscriptions, last_updated=now), self.subscription_id
