# SubVault: Vault API - RESTful endpoints
#
# API endpoints for vault operations:
# - Unlock/lock vault (unlock issues the session token)
# - CRUD for credentials and subscriptions
# - Spending summary, blob export/import
#
# Key derivation and sealing are CPU bound, so every controller call runs
# in the threadpool instead of on the event loop.

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field

from ..vault import PersistenceFailed, VaultManager, VaultResult
from ..vault.storage import export_filename
from .security import ApiSession, verify_session_token

router = APIRouter(prefix="/api/vault", tags=["vault"])

_ERROR_STATUS = {
    "authentication_failed": status.HTTP_401_UNAUTHORIZED,
    "validation_failed": status.HTTP_400_BAD_REQUEST,
    "vault_locked": status.HTTP_403_FORBIDDEN,
    "not_found": status.HTTP_404_NOT_FOUND,
    "persistence_failed": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_vault_manager(request: Request) -> VaultManager:
    return request.app.state.vault_manager


def get_session(request: Request) -> ApiSession:
    return request.app.state.session


def _raise_for(result: VaultResult) -> None:
    error = result.error
    raise HTTPException(
        status_code=_ERROR_STATUS.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=error.to_dict(),
    )


def _vault_payload(result: VaultResult) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"success": True, "vault": result.vault.to_dict()}
    if result.record_id:
        payload["id"] = result.record_id
    return payload


# Request/Response Models
class UnlockVaultRequest(BaseModel):
    passphrase: str


class CredentialRequest(BaseModel):
    label: str = Field(..., max_length=200)
    username: str = Field(..., max_length=200)
    password: Optional[str] = None
    notes: Optional[str] = None


class SubscriptionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, max_length=200)
    cost: Optional[float] = None
    currency: Optional[str] = None
    frequency_amount: Optional[int] = Field(None, alias="frequencyAmount")
    frequency_unit: Optional[str] = Field(None, alias="frequencyUnit")
    start_date: Optional[str] = Field(None, alias="startDate")
    renewal_date: Optional[str] = Field(None, alias="renewalDate")
    category: Optional[str] = None
    credential_id: Optional[str] = Field(None, alias="credentialId")
    website: Optional[str] = None
    active: bool = True


class ImportVaultRequest(BaseModel):
    blob: Dict[str, Any]


class VaultStatusResponse(BaseModel):
    is_unlocked: bool
    vault_exists: bool


# Endpoints

@router.get("/status", response_model=VaultStatusResponse)
async def get_vault_status(manager: VaultManager = Depends(get_vault_manager)):
    """Whether a vault exists and whether it is unlocked."""
    exists = await run_in_threadpool(manager.vault_exists)
    return VaultStatusResponse(is_unlocked=manager.is_unlocked, vault_exists=exists)


@router.post("/unlock")
async def unlock_vault(
    request: UnlockVaultRequest,
    manager: VaultManager = Depends(get_vault_manager),
    session: ApiSession = Depends(get_session),
):
    """
    Unlock (or create, on first use) the vault.

    Returns the decrypted vault and the session token required by every
    other vault endpoint.
    """
    result = await run_in_threadpool(manager.unlock, request.passphrase)
    if not result.success:
        if not manager.is_unlocked:
            session.close()
        _raise_for(result)

    token = session.open()
    return {"success": True, "session_token": token, "vault": result.vault.to_dict()}


@router.post("/lock")
async def lock_vault(
    manager: VaultManager = Depends(get_vault_manager),
    session: ApiSession = Depends(get_session),
):
    """Lock vault and revoke the session token. Always succeeds."""
    await run_in_threadpool(manager.lock)
    session.close()
    return {"success": True, "message": "Vault locked"}


@router.get("")
async def get_vault(
    token: str = Depends(verify_session_token),
    manager: VaultManager = Depends(get_vault_manager),
):
    """Full decrypted vault snapshot."""
    vault = manager.vault
    if vault is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Vault is locked")
    return vault.to_dict()


@router.post("/credentials", status_code=status.HTTP_201_CREATED)
async def add_credential(
    request: CredentialRequest,
    token: str = Depends(verify_session_token),
    manager: VaultManager = Depends(get_vault_manager),
):
    result = await run_in_threadpool(
        manager.add_credential,
        request.label, request.username, request.password, request.notes,
    )
    if not result.success:
        _raise_for(result)
    return _vault_payload(result)


@router.put("/credentials/{credential_id}")
async def update_credential(
    credential_id: str,
    request: CredentialRequest,
    token: str = Depends(verify_session_token),
    manager: VaultManager = Depends(get_vault_manager),
):
    result = await run_in_threadpool(
        manager.update_credential,
        credential_id, request.label, request.username, request.password, request.notes,
    )
    if not result.success:
        _raise_for(result)
    return _vault_payload(result)


@router.delete("/credentials/{credential_id}")
async def delete_credential(
    credential_id: str,
    token: str = Depends(verify_session_token),
    manager: VaultManager = Depends(get_vault_manager),
):
    """Delete a credential. Subscriptions linked to it are kept, unlinked."""
    result = await run_in_threadpool(manager.delete_credential, credential_id)
    if not result.success:
        _raise_for(result)
    return _vault_payload(result)


@router.post("/subscriptions", status_code=status.HTTP_201_CREATED)
async def add_subscription(
    request: SubscriptionRequest,
    token: str = Depends(verify_session_token),
    manager: VaultManager = Depends(get_vault_manager),
):
    """Add a subscription. renewalDate is always computed server-side."""
    fields = request.model_dump()
    result = await run_in_threadpool(lambda: manager.add_subscription(**fields))
    if not result.success:
        _raise_for(result)
    return _vault_payload(result)


@router.put("/subscriptions/{subscription_id}")
async def update_subscription(
    subscription_id: str,
    request: SubscriptionRequest,
    token: str = Depends(verify_session_token),
    manager: VaultManager = Depends(get_vault_manager),
):
    fields = request.model_dump()
    result = await run_in_threadpool(lambda: manager.update_subscription(subscription_id, **fields))
    if not result.success:
        _raise_for(result)
    return _vault_payload(result)


@router.delete("/subscriptions/{subscription_id}")
async def delete_subscription(
    subscription_id: str,
    token: str = Depends(verify_session_token),
    manager: VaultManager = Depends(get_vault_manager),
):
    result = await run_in_threadpool(manager.delete_subscription, subscription_id)
    if not result.success:
        _raise_for(result)
    return _vault_payload(result)


@router.get("/summary")
async def get_summary(
    currency: Optional[str] = None,
    token: str = Depends(verify_session_token),
    manager: VaultManager = Depends(get_vault_manager),
):
    """Monthly/yearly spend of active subscriptions, by category."""
    summary = manager.summary(currency=currency.upper() if currency else None)
    if summary is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Vault is locked")
    return summary.to_dict()


@router.get("/export")
async def export_vault(
    token: str = Depends(verify_session_token),
    manager: VaultManager = Depends(get_vault_manager),
):
    """Download the sealed blob exactly as stored."""
    try:
        text = await run_in_threadpool(manager.export)
    except PersistenceFailed as e:
        raise HTTPException(status_code=_ERROR_STATUS[e.kind], detail=e.to_dict()) from e
    if text is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No vault to export")
    return Response(
        content=text,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@router.post("/import")
async def import_vault(
    request: ImportVaultRequest,
    token: str = Depends(verify_session_token),
    manager: VaultManager = Depends(get_vault_manager),
    session: ApiSession = Depends(get_session),
):
    """Replace the stored vault with an exported blob. Locks the vault."""
    result = await run_in_threadpool(manager.import_blob, json.dumps(request.blob))
    if not result.success:
        _raise_for(result)
    session.close()
    return {"success": True, "message": "Vault imported. Unlock it with its passphrase."}
