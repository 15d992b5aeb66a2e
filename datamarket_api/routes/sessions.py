"""Consumer session routes (login / logout)."""

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from datamarket_api.security.session import SessionStore, authenticate, get_session_store

router = APIRouter(prefix="/v1", tags=["sessions"])


class LoginRequest(BaseModel):
    """Login request."""

    account: str
    password: str


class SessionResponse(BaseModel):
    """Open session."""

    token: str
    address: str
    expires_in: int


@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def login(
    credentials: LoginRequest,
    store: SessionStore = Depends(get_session_store),
):
    """Unlock the account keystore and open a session."""
    # keystore decryption runs a slow KDF
    session = await run_in_threadpool(authenticate, credentials.account, credentials.password, store)
    return SessionResponse(token=session.token, address=session.address, expires_in=store.ttl_seconds)


@router.delete("/sessions", status_code=status.HTTP_200_OK)
async def logout(
    request: Request,
    store: SessionStore = Depends(get_session_store),
):
    """Close the session and wipe its key material."""
    store.close(request.state.session.token)
    return {"status": "closed"}
