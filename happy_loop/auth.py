from typing import Optional

from fastapi import Depends, HTTPException, Request
from passlib.context import CryptContext
from sqlmodel import Session, select

from .db import get_session
from .models import Kid, Parent

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def get_current_parent(
    request: Request, session: Session = Depends(get_session)
) -> Optional[Parent]:
    parent_id = request.session.get("parent_id")
    if not parent_id:
        return None
    return session.get(Parent, parent_id)


def require_parent(parent: Optional[Parent] = Depends(get_current_parent)) -> Parent:
    if not parent:
        raise HTTPException(status_code=401)
    return parent


def get_own_kid(session: Session, parent: Parent, kid_id: int) -> Kid:
    kid = session.exec(select(Kid).where(Kid.id == kid_id, Kid.parent_id == parent.id)).first()
    if not kid:
        raise HTTPException(status_code=404, detail="Kid not found")
    return kid


def login_parent(request: Request, parent: Parent):
    request.session["parent_id"] = parent.id


def logout_parent(request: Request):
    request.session.clear()
