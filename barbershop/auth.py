import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.orm import Session

from .config import SUPABASE_JWT_AUDIENCE, SUPABASE_JWT_SECRET
from .database import get_db
from .models import Usuario

logger = logging.getLogger(__name__)

security = HTTPBearer()

ADMIN_ROLES = ("admin", "barbeiro")


def verify_supabase_token(token: str) -> dict:
    """
    Verify a Supabase Auth access token (HS256, signed with the project's JWT secret).

    Raises:
        HTTPException: 401 for an invalid or expired token, 500 when the secret is missing
    """
    if not SUPABASE_JWT_SECRET:
        logger.error("❌ SUPABASE_JWT_SECRET not configured")
        raise HTTPException(status_code=500, detail="Authentication not configured")

    try:
        return jwt.decode(token, SUPABASE_JWT_SECRET, algorithms=["HS256"], audience=SUPABASE_JWT_AUDIENCE)
    except ExpiredSignatureError as e:
        raise HTTPException(
            status_code=401,
            detail="Token has expired. Please refresh your session.",
            headers={"X-Token-Expired": "true"},
        ) from e
    except JWTError as e:
        logger.warning(f"⚠️ Token verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid token") from e


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> Usuario:
    """Resolve the usuarios row of the Supabase user, creating it on first login"""
    claims = verify_supabase_token(credentials.credentials)

    auth_id = claims.get("sub")
    if not auth_id:
        logger.error(f"❌ Token missing sub claim. Available claims: {list(claims.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    user = db.query(Usuario).filter(Usuario.auth_id == auth_id).first()
    if user:
        return user

    email = claims.get("email")
    metadata = claims.get("user_metadata") or {}

    # Profile created by the admin panel before the first login
    if email:
        user = db.query(Usuario).filter(Usuario.email == email, Usuario.auth_id.is_(None)).first()
        if user:
            user.auth_id = auth_id
            db.commit()
            db.refresh(user)
            logger.info(f"🔄 Linked existing profile {email} to auth user {auth_id}")
            return user

    logger.info(f"🆕 Creating new user: {email}")
    user = Usuario(
        auth_id=auth_id,
        email=email,
        nome=metadata.get("nome") or metadata.get("full_name") or (email or "Cliente"),
        telefone=metadata.get("telefone"),
        tipo="cliente",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


async def require_admin(user: Usuario = Depends(get_current_user)) -> Usuario:
    """Shop staff bound to a barbearia"""
    if user.tipo not in ADMIN_ROLES:
        logger.warning(f"⚠️ User {user.id} ({user.tipo}) attempted to access an admin route")
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


async def require_tenant_admin(user: Usuario = Depends(require_admin)) -> Usuario:
    if not user.barbearia_id:
        raise HTTPException(status_code=400, detail="User is not linked to a barbershop")
    return user
