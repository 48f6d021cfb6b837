from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, Request, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from pharmastock.config import settings
from pharmastock.database import get_db
from pharmastock.models.user import User, UserRole
from pharmastock.services import auth_service

router = APIRouter(prefix="/auth", tags=["Auth"])


class LoginRequest(BaseModel):
    username: str
    password: str


class UserOut(BaseModel):
    id: str
    username: str
    display_name: str
    role: str
    active: bool = True
    created_at: str = ""

    model_config = {"from_attributes": True}


class CreateUserRequest(BaseModel):
    username: str
    password: str
    display_name: str = ""
    role: str = UserRole.STAFF.value


class ActivityLogOut(BaseModel):
    id: str
    user_id: str
    username: str
    action: str
    detail: str
    reference_id: str
    ip_address: str
    created_at: str


def _user_out(u: User) -> UserOut:
    return UserOut(
        id=u.id, username=u.username, display_name=u.display_name,
        role=u.role, active=u.active,
        created_at=u.created_at.isoformat() if u.created_at else "",
    )


def get_current_user(
    token: str | None = Cookie(default=None, alias="token"),
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    """Dependency: resolve the user from the JWT cookie or a Bearer header."""
    if not token and authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    if not token:
        raise HTTPException(401, "Not authenticated")
    payload = auth_service.decode_token(token)
    if not payload:
        raise HTTPException(401, "Invalid or expired token")
    user = auth_service.get_user_by_id(db, payload["sub"])
    if not user or not user.active:
        raise HTTPException(401, "User not found or disabled")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != UserRole.ADMIN.value:
        raise HTTPException(403, "Admin only")
    return user


def require_purchase_approver(user: User = Depends(get_current_user)) -> User:
    if not user.can_approve_purchases:
        raise HTTPException(403, "Only admins and pharmacists can approve or reject purchase orders")
    return user


def client_ip(request: Request) -> str:
    return request.client.host if request.client else ""


@router.post("/login")
def login(data: LoginRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    user = auth_service.authenticate(db, data.username, data.password)
    if not user:
        raise HTTPException(401, "Invalid username or password")
    token = auth_service.create_access_token(user)
    response.set_cookie(
        "token", token, httponly=True, samesite="lax", max_age=3600 * settings.ACCESS_TOKEN_EXPIRE_HOURS
    )
    auth_service.log_activity(db, user, "login", ip=client_ip(request))
    return {"token": token, "user": _user_out(user)}


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie("token")
    return {"ok": True}


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return _user_out(user)


@router.get("/users", response_model=list[UserOut])
def list_users(user: User = Depends(require_admin), db: Session = Depends(get_db)):
    return [_user_out(u) for u in auth_service.list_users(db)]


@router.post("/users", response_model=UserOut, status_code=201)
def create_user(data: CreateUserRequest, user: User = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        u = auth_service.create_user(db, data.username, data.password, data.display_name, data.role)
    except ValueError as e:
        raise HTTPException(400, str(e))
    auth_service.log_activity(db, user, "create_user", detail=f"Created user {u.username} ({u.role})", reference_id=u.id)
    return _user_out(u)


@router.get("/activity", response_model=list[ActivityLogOut])
def activity_logs(
    limit: int = 100,
    user_id: str | None = None,
    reference_id: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    logs = auth_service.get_activity_logs(db, limit=limit, user_id=user_id, reference_id=reference_id)
    return [
        ActivityLogOut(
            id=l.id,
            user_id=l.user_id,
            username=l.username,
            action=l.action,
            detail=l.detail,
            reference_id=l.reference_id,
            ip_address=l.ip_address,
            created_at=l.created_at.isoformat() if l.created_at else "",
        )
        for l in logs
    ]
