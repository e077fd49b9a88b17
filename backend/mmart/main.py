import logging
import uuid

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from mmart.core.config import settings
from mmart.core.error_handlers import register_error_handlers
from mmart.core.observability import setup_logging
from mmart.models import Base  # noqa: F401 - register models
from mmart.routers import admin, auth, health, orders, verification, vouchers

setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Shop backend: account verification codes and vouchers",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(health.router, prefix="/health")
app.include_router(auth.router, prefix="/auth")
app.include_router(verification.router, prefix="/verification")
app.include_router(vouchers.router, prefix="/vouchers")
app.include_router(orders.router, prefix="/orders")
app.include_router(admin.router, prefix="/admin")


def seed_initial_admin(db: Session, username: str, password: str) -> bool:
    """Create the first admin account if none exists yet."""
    from mmart.core.security import get_password_hash
    from mmart.models.admin_user import AdminUser

    if db.query(AdminUser).first() is not None:
        return False
    db.add(AdminUser(id=str(uuid.uuid4()), username=username, hashed_password=get_password_hash(password)))
    db.commit()
    logger.info("Seeded initial admin user %s", username)
    return True


@app.on_event("startup")
def startup():
    if not (settings.INITIAL_ADMIN_USERNAME and settings.INITIAL_ADMIN_PASSWORD):
        return
    from mmart.core.database import SessionLocal

    db = SessionLocal()
    try:
        seed_initial_admin(db, settings.INITIAL_ADMIN_USERNAME, settings.INITIAL_ADMIN_PASSWORD)
    finally:
        db.close()
