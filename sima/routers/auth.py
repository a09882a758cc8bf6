# sima/routers/auth.py
from fastapi import APIRouter, Depends, HTTPException, Request, Form, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from sqlalchemy.orm import Session
from passlib.context import CryptContext
from jose import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import secrets

from .. import models
from ..deps import get_db, get_current_user, organization_of
from ..schemas import UserCreate, LoginRequest
from ..settings import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES, COOKIE_SECURE, templates

logger = logging.getLogger(__name__)

router = APIRouter()          # API endpoints (mounted under /api)
router_pages = APIRouter()    # /auth/* pages

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def _set_session(resp, user: models.User):
    token = create_access_token(
        data={"sub": user.uid, "type": user.account_type},
        expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    resp.set_cookie(
        "access_token",
        f"Bearer {token}",
        httponly=True,
        samesite="lax",
        secure=COOKIE_SECURE,
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    return resp


def create_user(db: Session, payload: UserCreate) -> models.User:
    email = payload.email.strip().lower()
    if db.query(models.User).filter(models.User.email == email).first():
        raise HTTPException(status_code=409, detail="Email sudah terdaftar")
    user = models.User(
        uid=secrets.token_hex(14),
        full_name=payload.full_name.strip(),
        email=email,
        phone=(payload.phone or "").strip() or None,
        password=pwd_context.hash(payload.password),
        account_type=payload.account_type,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("User %s registered (%s)", user.email, user.account_type)
    return user


def authenticate(db: Session, email: str, password: str) -> Optional[models.User]:
    user = db.query(models.User).filter(models.User.email == (email or "").strip().lower()).first()
    if not user or not verify_password(password, user.password):
        return None
    return user


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: UserCreate, db: Session = Depends(get_db)):
    user = create_user(db, payload)
    return {"message": "User created successfully", "id": user.id, "uid": user.uid}


@router.post("/login")
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    user = authenticate(db, payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Email atau password salah")
    resp = JSONResponse({"message": "Login ok", "account_type": user.account_type})
    return _set_session(resp, user)


@router.post("/logout")
def logout_api():
    resp = JSONResponse({"message": "Berhasil keluar."})
    resp.delete_cookie("access_token")
    return resp


@router.get("/me")
def me(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    org = organization_of(db, user)
    return {
        "id": user.id,
        "uid": user.uid,
        "full_name": user.full_name,
        "email": user.email,
        "account_type": user.account_type,
        "organization_id": org.id if org else None,
    }


# ---- pages ----

@router_pages.get("/auth/login", response_class=HTMLResponse, include_in_schema=False)
def login_page(request: Request):
    return templates.TemplateResponse(request, "login.html", {})


@router_pages.post("/auth/login", response_class=HTMLResponse, include_in_schema=False)
def handle_login(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    db: Session = Depends(get_db),
):
    user = authenticate(db, email, password)
    if not user:
        return templates.TemplateResponse(
            request,
            "login.html",
            {"error": "Email atau password salah", "email": email},
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    resp = RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)
    return _set_session(resp, user)


@router_pages.get("/auth/register", response_class=HTMLResponse, include_in_schema=False)
def register_page(request: Request):
    return templates.TemplateResponse(request, "register.html", {"account_types": models.ACCOUNT_TYPES})


@router_pages.post("/auth/register", response_class=HTMLResponse, include_in_schema=False)
def handle_register(
    request: Request,
    full_name: str = Form(...),
    email: str = Form(...),
    password: str = Form(...),
    phone: str = Form(""),
    account_type: str = Form("admin"),
    db: Session = Depends(get_db),
):
    ctx = {"account_types": models.ACCOUNT_TYPES, "full_name": full_name, "email": email}
    try:
        payload = UserCreate(full_name=full_name, email=email, password=password, phone=phone, account_type=account_type)
    except ValueError:
        ctx["error"] = "Data pendaftaran tidak valid (password minimal 6 karakter)"
        return templates.TemplateResponse(request, "register.html", ctx, status_code=status.HTTP_400_BAD_REQUEST)
    try:
        user = create_user(db, payload)
    except HTTPException as e:
        ctx["error"] = e.detail
        return templates.TemplateResponse(request, "register.html", ctx, status_code=e.status_code)
    resp = RedirectResponse(url="/settings/instansi", status_code=status.HTTP_303_SEE_OTHER)
    return _set_session(resp, user)


@router_pages.get("/auth/logout", include_in_schema=False)
def logout():
    resp = RedirectResponse(url="/auth/login?toast=Berhasil+keluar.", status_code=status.HTTP_303_SEE_OTHER)
    resp.delete_cookie("access_token")
    return resp
