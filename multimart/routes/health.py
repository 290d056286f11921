from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from multimart.database import get_db

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check(db: Session = Depends(get_db)):
    """
    Keep-alive endpoint for the hosting platform. Also touches the database.
    """
    db.execute(text("SELECT 1"))
    return {
        "status": "healthy",
        "message": "Server is awake",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ping")
def ping():
    return {"ping": "pong"}
