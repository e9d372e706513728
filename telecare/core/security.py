from enum import Enum
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel
from telecare.core.config import settings

http_bearer = HTTPBearer(auto_error=False)

class Role(str, Enum):
    PROVIDER = "provider"
    ORG_ADMIN = "org-admin"
    DEPARTMENT_ADMIN = "department-admin"
    SYSTEM_ADMIN = "system-admin"
    CLIENT = "client"

class Principal(BaseModel):
    """Normalized actor context; raw credentials never reach the core."""
    identity: str
    role: Role
    org_id: str
    department_id: str | None = None

def _decode_token(token: str) -> dict:
    try:
        options = {"verify_aud": settings.REQUIRED_AUDIENCE is not None}
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE, options=options)
        return payload
    except JWTError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}")

def principal_from_claims(data: dict) -> Principal:
    identity = data.get("email") or data.get("sub")
    if not identity:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token carries no identity")
    try:
        role = Role(str(data.get("role", Role.CLIENT.value)).lower())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown role")
    return Principal(
        identity=str(identity),
        role=role,
        org_id=str(data.get("org_id") or settings.DEFAULT_ORG_ID),
        department_id=data.get("department_id"),
    )

async def get_principal(creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> Principal:
    # In local/dev, allow missing token and use default org
    if creds is None and settings.ENV == "local":
        return Principal(identity="dev@localhost", role=Role.SYSTEM_ADMIN, org_id=settings.DEFAULT_ORG_ID)
    if creds is None:
        raise HTTPException(status_code=401, detail="Missing token")
    return principal_from_claims(_decode_token(creds.credentials))

def require_roles(*allowed: Role):
    def dep(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.role == Role.SYSTEM_ADMIN:
            return principal
        if principal.role not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient role")
        return principal
    return dep
