from fastapi import APIRouter, Depends

from backend.security import AuthenticatedUser, require_roles

router = APIRouter()


@router.get("/auth/me")
def auth_me(user: AuthenticatedUser = Depends(require_roles())):
    return {
        "id": user.id,
        "role": user.role.value,
        "issuedAt": user.issued_at,
        "expiresAt": user.expires_at,
    }
