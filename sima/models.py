# sima/models.py
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint, Float, Text
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from .database import Base

ACCOUNT_TYPES = ("ambulance", "police", "firefighter", "admin")
INSTANCE_TYPES = ("ambulance", "police", "firefighter")
REPORT_STATUSES = ("pending", "process", "success", "error", "fiktif")


def _utcnow():
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    id           = Column(Integer, primary_key=True, index=True)
    uid          = Column(String(64), unique=True, index=True, nullable=False)  # id di penyedia identitas
    full_name    = Column(String(255), nullable=False)
    email        = Column(String(255), unique=True, index=True, nullable=False)
    phone        = Column(String(32))
    password     = Column(String(255), nullable=False)  # hash
    account_type = Column(String(32), nullable=False, default="admin")
    created_at   = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    __table_args__ = (
        CheckConstraint(
            "account_type IN ('ambulance','police','firefighter','admin')",
            name="ck_users_account_type",
        ),
    )


class Organization(Base):
    __tablename__ = "organizations"
    id            = Column(Integer, primary_key=True, index=True)
    name          = Column(String(255), nullable=False)
    latitude      = Column(Float, nullable=False)
    longitude     = Column(Float, nullable=False)
    # satu instansi per user
    user_id       = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    instance_type = Column(String(32), nullable=False)

    user = relationship("User")


class Report(Base):
    __tablename__ = "reports"
    id          = Column(Integer, primary_key=True, index=True)
    title       = Column(String(255), nullable=False)
    description = Column(Text)
    status      = Column(String(16), nullable=False, default="pending")
    latitude    = Column(Float, nullable=False)
    longitude   = Column(Float, nullable=False)
    address     = Column(String(512))
    image_url   = Column(String(1024))
    type        = Column(String(32))
    user_id     = Column(Integer, ForeignKey("users.id"))
    created_at  = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    user = relationship("User")


class ReportAssignment(Base):
    __tablename__ = "report_assignments"
    id              = Column(Integer, primary_key=True, index=True)
    report_id       = Column(Integer, ForeignKey("reports.id"), nullable=False, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    assigned_at     = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    status          = Column(String(16), nullable=False, default="pending")
    distance        = Column(Float, nullable=False, default=0.0)  # km
    __table_args__ = (
        CheckConstraint("distance >= 0", name="ck_report_assignments_distance"),
    )

    report       = relationship("Report")
    organization = relationship("Organization")


class Count(Base):
    __tablename__ = "counts"
    id    = Column(Integer, primary_key=True, index=True)
    title = Column(String(64), unique=True, nullable=False)  # police / ambulance / firefighter
    value = Column(Integer, nullable=False, default=0)
