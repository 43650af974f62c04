import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from storefront.api.deps import get_cart_store, get_db
from storefront.api.schemas import Envelope, LoginPayload, RegisterPayload, TokenRead, UserRead, ok
from storefront.core.auth import get_current_identity, get_guest_identity
from storefront.core.errors import UnauthorizedError
from storefront.db.models import User
from storefront.security.utils import create_access_token, hash_password, now_utc, verify_password
from storefront.store.cart_store import CartIdentity, CartStore

logger = logging.getLogger(__name__)

router = APIRouter()  # main.py mounts at /v1/auth


def _session_for(user: User, guest: Optional[CartIdentity], store: CartStore) -> dict:
    if guest is not None:
        # guest cart follows the shopper into their account
        store.reconcile(guest, CartIdentity.user(user.id))
    token, exp = create_access_token(user.email, user.id, user.role)
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_at": exp,
        "user": UserRead.model_validate(user).model_dump(),
    }


@router.post("/register", response_model=Envelope[TokenRead], status_code=status.HTTP_201_CREATED)
def register(payload: RegisterPayload, db: Session = Depends(get_db), store: CartStore = Depends(get_cart_store),
             guest: Optional[CartIdentity] = Depends(get_guest_identity)):
    # Prevent duplicate email
    if db.query(User).filter(User.email == str(payload.email)).first():
        raise HTTPException(status_code=409, detail="Email already registered")

    user = User(
        email=str(payload.email),
        name=payload.name,
        password_hash=hash_password(payload.password),
        role="customer",
        created_at=now_utc(),
        updated_at=now_utc(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s", user.id)
    return ok(_session_for(user, guest, store), "Registration successful")


@router.post("/login", response_model=Envelope[TokenRead])
def login(payload: LoginPayload, db: Session = Depends(get_db), store: CartStore = Depends(get_cart_store),
          guest: Optional[CartIdentity] = Depends(get_guest_identity)):
    user = db.query(User).filter(User.email == str(payload.email)).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise UnauthorizedError("Invalid credentials")
    return ok(_session_for(user, guest, store))


@router.get("/me", response_model=Envelope[UserRead])
def me(claims: dict = Depends(get_current_identity), db: Session = Depends(get_db)):
    user = db.get(User, claims["uid"])
    if not user:
        raise UnauthorizedError("User not found")
    return ok(UserRead.model_validate(user))
