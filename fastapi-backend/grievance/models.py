from typing import Optional
from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


# Lifecycle / classification vocabularies. Stored as plain strings so the
# values read the same in the database and in the web frontend.
STATUS_PENDING = "Pending"
STATUS_IN_PROGRESS = "In Progress"
STATUS_RESOLVED = "Resolved"
COMPLAINT_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_RESOLVED)
OPEN_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS)

PRIORITY_NORMAL = "normal"
PRIORITY_CRITICAL = "critical"

WORKER_AVAILABLE = "Available"
WORKER_BUSY = "Busy"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Identity(SQLModel, table=True):
    """A student account keyed by institute email."""
    __tablename__ = "users"
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(sa_column_kwargs={"unique": True}, index=True)
    name: Optional[str] = None
    # Hashed one-time code (like password hashes). NULL means no active code.
    otp_hash: Optional[str] = None
    otp_expires_at: Optional[datetime] = None
    otp_attempts: int = Field(default=0)
    verified: bool = Field(default=False)
    created_at: Optional[datetime] = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class HostelAdmin(SQLModel, table=True):
    __tablename__ = "hostel_admins"
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(sa_column_kwargs={"unique": True})
    password_hash: str
    hostel: str = Field(index=True)
    created_at: Optional[datetime] = Field(default_factory=utcnow)


class Worker(SQLModel, table=True):
    __tablename__ = "workers"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    phone: str = Field(index=True)
    hostel: str = Field(index=True)
    work_type: str
    availability: str = Field(default=WORKER_AVAILABLE)
    created_at: Optional[datetime] = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class Complaint(SQLModel, table=True):
    __tablename__ = "complaints"
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    type: str
    description: str
    hostel_name: str = Field(index=True)
    room_no: str
    floor_no: Optional[str] = None
    phone_number: Optional[str] = None
    photo_url: Optional[str] = None
    status: str = Field(default=STATUS_PENDING, index=True)
    # Set once at creation by the classifier; never updated afterwards.
    priority: str = Field(default=PRIORITY_NORMAL)
    assigned_worker_id: Optional[int] = Field(default=None, foreign_key="workers.id", index=True)
    worker_proof_url: Optional[str] = None
    created_at: Optional[datetime] = Field(default_factory=utcnow, index=True)
    updated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class AssignmentAudit(SQLModel, table=True):
    __tablename__ = "assignment_audits"
    id: Optional[int] = Field(default=None, primary_key=True)
    complaint_id: int = Field(foreign_key="complaints.id", index=True)
    worker_id: int = Field(foreign_key="workers.id")
    hostel: str
    # Worker that held the complaint before this assignment, if any.
    replaced_worker_id: Optional[int] = None
    notified: bool = Field(default=False)
    created_at: Optional[datetime] = Field(default_factory=utcnow)
