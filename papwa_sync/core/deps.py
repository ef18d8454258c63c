"""FastAPI dependencies for the process context and database access."""

from typing import Generator

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from papwa_sync.context import AppContext


def get_context(request: Request) -> AppContext:
    """The AppContext built in the app lifespan."""
    return request.app.state.ctx


def get_db(ctx: AppContext = Depends(get_context)) -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = ctx.session()
    try:
        yield db
    finally:
        db.close()


def verify_internal_secret(
    x_internal_secret: str = Header(...),
    ctx: AppContext = Depends(get_context),
) -> None:
    """Verify the internal secret header."""
    expected = ctx.settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")
