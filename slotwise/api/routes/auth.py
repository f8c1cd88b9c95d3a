import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from slotwise.db.session import get_db
from slotwise.db.models import Provider
from slotwise.schemas.auth import LoginRequest, TokenResponse
from slotwise.core.security import verify_password, create_access_token
from slotwise.core.rate_limit import allow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# ===================================================================
# LOGIN
# ===================================================================
# - Enumeration-safe (generic error)
# - Rate limited per IP
# ===================================================================
@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    if not allow("auth", request, "login"):
        raise HTTPException(status_code=429, detail="Too many login attempts")

    email = payload.username.lower().strip()

    provider = (
        db.query(Provider)
        .filter(Provider.email == email)
        .first()
    )

    # Generic error prevents user enumeration
    if not provider or not verify_password(payload.password, provider.hashed_password):
        raise HTTPException(status_code=400, detail="Invalid email or password")

    if not provider.is_active:
        raise HTTPException(status_code=403, detail="Provider account is disabled")

    logger.info("Provider %s logged in", provider.id)

    return TokenResponse(access_token=create_access_token({"sub": str(provider.id)}))
