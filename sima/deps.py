from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from .settings import SECRET_KEY, ALGORITHM
from .database import SessionLocal
from .realtime import Broker
from . import models

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token tidak valid") from e

def _wants_json(request: Request) -> bool:
    accept = (request.headers.get("accept") or "").lower()
    # path /api atau Accept JSON; "*/*" tetap dianggap halaman agar redirect jalan
    return request.url.path.startswith("/api") or "application/json" in accept


def user_from_cookie(db: Session, token_cookie: Optional[str]) -> Optional[models.User]:
    """Resolve the ``access_token`` cookie to a user, or None."""
    if not token_cookie:
        return None
    parts = token_cookie.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    try:
        payload = decode_token(parts[1])
    except HTTPException:
        return None
    uid = payload.get("sub")
    if not uid:
        return None
    return db.query(models.User).filter(models.User.uid == uid).first()


def get_current_user(request: Request, db: Session = Depends(get_db)) -> models.User:
    token_cookie = request.cookies.get("access_token")
    if not token_cookie:
        # For API requests, return 401 JSON instead of redirect
        if _wants_json(request):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
        raise HTTPException(status_code=status.HTTP_303_SEE_OTHER, detail="Silakan login terlebih dahulu")
    user = user_from_cookie(db, token_cookie)
    if not user:
        if _wants_json(request):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token tidak valid")
        raise HTTPException(status_code=status.HTTP_303_SEE_OTHER, detail="Sesi berakhir, silakan login kembali")
    return user


def organization_of(db: Session, user: models.User) -> Optional[models.Organization]:
    return db.query(models.Organization).filter(models.Organization.user_id == user.id).first()


def get_current_organization(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Organization:
    org = organization_of(db, user)
    if not org:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Instansi belum diatur")
    return org


def get_broker(request: Request) -> Broker:
    return request.app.state.broker
