"""
Vérification du token admin (JWT bearer).

L'émission des tokens est faite par le fournisseur d'identité externe;
on vérifie uniquement la signature et le claim admin.
"""
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from clearance.core.config import JWT_ALGO, JWT_SECRET
from clearance.core.logging import get_logger

logger = get_logger(__name__)

bearer = HTTPBearer(auto_error=False)


def require_admin(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> dict:
    """Verify admin access from the bearer token claims."""
    if not creds:
        raise HTTPException(status_code=401, detail="Missing token")
    try:
        payload = jwt.decode(creds.credentials, JWT_SECRET, algorithms=[JWT_ALGO])
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=401, detail="Invalid token")

    is_admin = payload.get("role") == "admin" or payload.get("is_admin") is True
    if not is_admin:
        logger.warning("Admin access denied", subject=subject)
        raise HTTPException(status_code=403, detail="Admin access required")
    return {"subject": subject, "is_admin": True}
