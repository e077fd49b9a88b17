from sqlalchemy import Boolean, Column, String, DateTime
from sqlalchemy.sql import func

from mmart.core.database import Base


class AdminUser(Base):
    """Back-office account: manages the catalog and vouchers."""

    __tablename__ = "admin_users"

    id = Column(String(36), primary_key=True, index=True)
    username = Column(String(100), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
