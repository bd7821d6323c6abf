from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from marketplace.core.roles import Role
from marketplace.deps import get_current_user
from marketplace.models.user import User
from marketplace.services import users as user_service

router = APIRouter()


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=8, max_length=128)
    name: str = Field(default="", max_length=120)
    role: Role = Role.SELLER
    referral_code: str | None = None


class LoginRequest(BaseModel):
    email: str
    password: str


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def auth_register(body: RegisterRequest):
    """Create an account and return a bearer token."""
    user = await user_service.register_user(
        body.email,
        body.password,
        name=body.name,
        role=body.role,
        referral_code=body.referral_code,
    )
    return {"user": user_service.user_to_dict(user), "access_token": user_service.token_for(user), "token_type": "bearer"}


@router.post("/login")
async def auth_login(body: LoginRequest):
    """Exchange email and password for a bearer token."""
    user = await user_service.authenticate(body.email, body.password)
    return {"user": user_service.user_to_dict(user), "access_token": user_service.token_for(user), "token_type": "bearer"}


@router.get("/me")
async def auth_me(user: User = Depends(get_current_user)):
    """Return current user."""
    return user_service.user_to_dict(user)


@router.post("/logout")
async def auth_logout(user: User = Depends(get_current_user)):
    """Invalidate all tokens issued to the current user."""
    await user_service.logout(user)
    return {"status": "logged_out"}
