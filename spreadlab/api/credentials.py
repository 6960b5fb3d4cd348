"""CRUD API for Hyperliquid API wallet credentials."""

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from spreadlab.api.deps import get_runtime, get_session, require_token
from spreadlab.models.credential import Credential
from spreadlab.schemas.credential import CredentialCreate, CredentialUpdate, CredentialRead
from spreadlab.services.encryption import FernetSecretStore
from spreadlab.wiring import Runtime

router = APIRouter(prefix="/api/credentials", tags=["credentials"], dependencies=[Depends(require_token)])


def get_secrets(runtime: Runtime = Depends(get_runtime)) -> FernetSecretStore:
    if runtime.secrets is None:
        raise HTTPException(status_code=503, detail="SL_ENCRYPTION_KEY is not configured")
    return runtime.secrets


@router.get("", response_model=list[CredentialRead])
def list_credentials(session: Session = Depends(get_session)):
    return session.exec(select(Credential)).all()


@router.post("", response_model=CredentialRead, status_code=201)
def create_credential(
    data: CredentialCreate,
    session: Session = Depends(get_session),
    secrets: FernetSecretStore = Depends(get_secrets),
    runtime: Runtime = Depends(get_runtime),
):
    cred = Credential(
        name=data.name,
        wallet_address=data.wallet_address,
        secret_encrypted=secrets.encrypt(data.secret),
    )
    session.add(cred)
    session.commit()
    session.refresh(cred)
    runtime.gateway.reset_exchange()
    return cred


@router.get("/{cred_id}", response_model=CredentialRead)
def get_credential(cred_id: int, session: Session = Depends(get_session)):
    cred = session.get(Credential, cred_id)
    if not cred:
        raise HTTPException(status_code=404, detail="Credential not found")
    return cred


@router.put("/{cred_id}", response_model=CredentialRead)
def update_credential(
    cred_id: int,
    data: CredentialUpdate,
    session: Session = Depends(get_session),
    secrets: FernetSecretStore = Depends(get_secrets),
    runtime: Runtime = Depends(get_runtime),
):
    cred = session.get(Credential, cred_id)
    if not cred:
        raise HTTPException(status_code=404, detail="Credential not found")

    update_data = data.model_dump(exclude_unset=True)
    if "secret" in update_data:
        secret = update_data.pop("secret")
        if secret is not None:
            cred.secret_encrypted = secrets.encrypt(secret)

    for key, value in update_data.items():
        setattr(cred, key, value)

    session.add(cred)
    session.commit()
    session.refresh(cred)
    runtime.gateway.reset_exchange()
    return cred


@router.delete("/{cred_id}", status_code=204)
def delete_credential(
    cred_id: int,
    session: Session = Depends(get_session),
    runtime: Runtime = Depends(get_runtime),
):
    cred = session.get(Credential, cred_id)
    if not cred:
        raise HTTPException(status_code=404, detail="Credential not found")
    session.delete(cred)
    session.commit()
    runtime.gateway.reset_exchange()


@router.post("/test")
async def test_credential(runtime: Runtime = Depends(get_runtime)):
    """Test connectivity to Hyperliquid using the active credential."""
    runtime.gateway.reset_exchange()
    return await runtime.gateway.test_connection()
