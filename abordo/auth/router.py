from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import AuthenticationError, ConflictError, ValidationError
from ..models.models import User
from ..schemas.auth import RegisterRequest, LoginRequest, TokenResponse, MeResponse, ProfileUpdate
from .security import get_password_hash, verify_password, create_access_token, get_current_user
from ..logging import structlog


router = APIRouter(prefix="/auth", tags=["auth"])


def _me(user: User) -> MeResponse:
    return MeResponse(
        id=str(user.id),
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        email_notifications=bool(user.email_notifications),
        created_at=user.created_at,
    )


@router.post("/register", response_model=TokenResponse, status_code=201)
def register(req: RegisterRequest, db: Session = Depends(get_db)):
    email = req.email.strip().lower()
    if db.query(User).filter(User.email == email).first():
        raise ConflictError("Email already registered")
    user = User(
        email=email,
        password_hash=get_password_hash(req.password),
        first_name=req.first_name.strip(),
        last_name=req.last_name.strip(),
        email_notifications=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    structlog.get_logger().info("user_registered", user_id=str(user.id))
    return TokenResponse(access_token=create_access_token(str(user.id)), user=_me(user))


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == req.email.strip().lower()).first()
    if not user or not verify_password(req.password, user.password_hash):
        raise AuthenticationError("Invalid credentials")
    if not user.is_active:
        raise AuthenticationError("User not active")
    return TokenResponse(access_token=create_access_token(str(user.id)), user=_me(user))


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return _me(user)


@router.put("/me", response_model=MeResponse)
def update_me(req: ProfileUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    data = req.model_dump(exclude_unset=True)
    if not data:
        raise ValidationError("No fields to update")
    for k, v in data.items():
        if v is not None:
            setattr(user, k, v.strip() if isinstance(v, str) else v)
    user.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)
    return _me(user)
