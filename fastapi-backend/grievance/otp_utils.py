"""OTP generation and verification for student sign-in.

An identity holds at most one active code (stored hashed). Requesting access
replaces the code; verifying consumes it. Every write is a conditional UPDATE
so concurrent requests for the same email cannot resurrect a consumed code or
un-verify an account.
"""
import secrets
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from email_validator import validate_email, EmailNotValidError
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from . import auth
from .config import get_settings
from .errors import DeliveryError, NotFoundError, ValidationError
from .metrics import OTP_REQUESTS, OTP_VERIFICATIONS
from .models import Identity, utcnow

logger = logging.getLogger("grievance.otp_utils")

OTP_LENGTH = 6


@dataclass
class AccessResult:
    email: str
    logged_in: bool = False
    code_sent: bool = False


def generate_otp_code() -> str:
    """Generate a uniformly random fixed-width numeric code."""
    return "".join(secrets.choice("0123456789") for _ in range(OTP_LENGTH))


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def normalize_institute_email(email: Optional[str]) -> str:
    """Validate and lower-case an email, enforcing the institute domain."""
    if not email or not email.strip():
        raise ValidationError("Email is required")
    email = email.strip().lower()
    try:
        email = validate_email(email, check_deliverability=False).normalized.lower()
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email address: {e}") from e

    domain = get_settings().institute_email_domain
    if not email.endswith(f"@{domain}"):
        raise ValidationError("Use your institute email only")
    return email


async def get_identity(session, email: str) -> Optional[Identity]:
    result = await session.exec(select(Identity).where(Identity.email == email))
    return result.first()


async def _reissue_code(session, identity_id: int, code_hash: str, expires_at: datetime, name: Optional[str]) -> bool:
    """Replace the active code of an unverified identity. False if it got verified meanwhile."""
    values = {
        "otp_hash": code_hash,
        "otp_expires_at": expires_at,
        "otp_attempts": 0,
        "updated_at": utcnow(),
    }
    if name:
        values["name"] = func.coalesce(Identity.name, name)
    result = await session.exec(
        update(Identity)
        .execution_options(synchronize_session=False)
        .where(Identity.id == identity_id, Identity.verified == False)  # noqa: E712
        .values(**values)
    )
    await session.commit()
    return result.rowcount == 1


async def request_access(session, mailer, email: str, name: Optional[str] = None) -> AccessResult:
    """Log a verified student straight in, or (re)issue and email a code.

    Raises ValidationError for non-institute emails (nothing is written) and
    DeliveryError when the code email cannot be sent.
    """
    try:
        email = normalize_institute_email(email)
    except ValidationError:
        OTP_REQUESTS.labels(outcome="rejected").inc()
        raise
    name = (name or "").strip() or None
    settings = get_settings()

    identity = await get_identity(session, email)
    if identity and identity.verified:
        OTP_REQUESTS.labels(outcome="logged_in").inc()
        logger.info("Verified identity %s logged in without a new code", email)
        return AccessResult(email=email, logged_in=True)

    code = generate_otp_code()
    code_hash = auth.get_password_hash(code)
    expires_at = utcnow() + timedelta(minutes=settings.otp_expiry_minutes)

    if identity is None:
        session.add(
            Identity(
                email=email,
                name=name,
                otp_hash=code_hash,
                otp_expires_at=expires_at,
                otp_attempts=0,
                verified=False,
            )
        )
        try:
            await session.commit()
            stored = True
        except IntegrityError:
            # A concurrent first request for this email inserted the row first.
            await session.rollback()
            identity = await get_identity(session, email)
            if identity is None:
                raise
            stored = await _reissue_code(session, identity.id, code_hash, expires_at, name)
    else:
        stored = await _reissue_code(session, identity.id, code_hash, expires_at, name)

    if not stored:
        OTP_REQUESTS.labels(outcome="logged_in").inc()
        logger.info("Identity %s was verified concurrently; logging in", email)
        return AccessResult(email=email, logged_in=True)

    if not await mailer.send_otp_email(email, code):
        OTP_REQUESTS.labels(outcome="delivery_failed").inc()
        raise DeliveryError("Error sending OTP")

    OTP_REQUESTS.labels(outcome="code_sent").inc()
    logger.info("Issued OTP for %s", email)
    return AccessResult(email=email, code_sent=True)


async def _clear_code(session, identity_id: int, code_hash: str) -> None:
    await session.exec(
        update(Identity)
        .execution_options(synchronize_session=False)
        .where(Identity.id == identity_id, Identity.otp_hash == code_hash)
        .values(otp_hash=None, otp_expires_at=None, otp_attempts=0, updated_at=utcnow())
    )
    await session.commit()


async def confirm_access(session, email: Optional[str], code: Optional[str]) -> Identity:
    """Consume the active code for ``email``; returns the now-verified identity."""
    if not email or not code:
        raise ValidationError("Email and OTP required")
    email = email.strip().lower()
    code = code.strip()
    settings = get_settings()

    identity = await get_identity(session, email)
    if identity is None:
        OTP_VERIFICATIONS.labels(outcome="not_found").inc()
        raise NotFoundError("User not found")

    active_hash = identity.otp_hash
    if not active_hash:
        OTP_VERIFICATIONS.labels(outcome="no_code").inc()
        raise ValidationError("Invalid OTP")

    if identity.otp_expires_at and _as_aware(identity.otp_expires_at) <= utcnow():
        await _clear_code(session, identity.id, active_hash)
        OTP_VERIFICATIONS.labels(outcome="expired").inc()
        raise ValidationError("OTP expired. Please request a new code.")

    if identity.otp_attempts >= settings.otp_max_attempts:
        await _clear_code(session, identity.id, active_hash)
        OTP_VERIFICATIONS.labels(outcome="locked").inc()
        raise ValidationError("Too many failed attempts. Please request a new code.")

    if not auth.verify_password(code, active_hash):
        await session.exec(
            update(Identity)
            .execution_options(synchronize_session=False)
            .where(Identity.id == identity.id, Identity.otp_hash == active_hash)
            .values(otp_attempts=Identity.otp_attempts + 1)
        )
        await session.commit()
        OTP_VERIFICATIONS.labels(outcome="mismatch").inc()
        logger.warning("OTP verification failed for %s: invalid code", email)
        raise ValidationError("Invalid OTP")

    result = await session.exec(
        update(Identity)
        .execution_options(synchronize_session=False)
        .where(Identity.id == identity.id, Identity.otp_hash == active_hash)
        .values(verified=True, otp_hash=None, otp_expires_at=None, otp_attempts=0, updated_at=utcnow())
    )
    await session.commit()
    if result.rowcount != 1:
        # Replaced by a newer code or consumed by a parallel verification.
        OTP_VERIFICATIONS.labels(outcome="superseded").inc()
        raise ValidationError("Invalid OTP")

    await session.refresh(identity)
    OTP_VERIFICATIONS.labels(outcome="verified").inc()
    logger.info("OTP verification successful for %s", email)
    return identity


__all__ = [
    "AccessResult",
    "generate_otp_code",
    "normalize_institute_email",
    "get_identity",
    "request_access",
    "confirm_access",
]
