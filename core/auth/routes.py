from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials

from core.auth.models import User
from core.auth.schemas import (
    UserLoginSchema,
    UserLoginResponseSchema,
    TokenResponseSchema,
    UserResponseSchema,
)
from core.auth.services import AuthService
from core.auth.dependencies import (
    get_auth_service,
    get_current_active_user,
    security
)
from core.auth.utils import JWTUtils


router = APIRouter()


@router.post("/login",
             response_model=TokenResponseSchema,
             summary="User login",
             description="Authenticate user and return access token")
async def login(
    credentials: UserLoginSchema,
    auth_service: AuthService = Depends(get_auth_service)
):
    """Authenticate user and return access token."""
    user = await auth_service.authenticate_user(credentials.username, credentials.password)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token, jti, expires_in = await auth_service.create_access_token(user)

    return TokenResponseSchema(
        access_token=access_token,
        token_type="bearer",
        expires_in=expires_in,
        user=UserLoginResponseSchema.model_validate(user)
    )


@router.post("/logout",
             status_code=status.HTTP_200_OK,
             summary="User logout",
             description="Logout user and revoke current token")
async def logout(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    auth_service: AuthService = Depends(get_auth_service)
):
    """Logout user and revoke current token."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    token_data = JWTUtils.verify_token(credentials.credentials)
    if token_data:
        await auth_service.revoke_token(token_data.jti)

    return {"message": "Successfully logged out"}


@router.get("/me",
            response_model=UserResponseSchema,
            summary="Get current user",
            description="Get current authenticated user information")
async def get_me(
    current_user: User = Depends(get_current_active_user)
):
    """Get current user information."""
    return UserResponseSchema.model_validate(current_user)
