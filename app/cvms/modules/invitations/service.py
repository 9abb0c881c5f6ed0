"""
Company invitations: an admin invites an email with a role, the invitee
redeems the token once (signing in, or creating an account on the spot).

Delivery is out of band; the token is returned to the inviting admin.
"""
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from werkzeug.security import generate_password_hash

from app.cvms.audit import record_event
from app.cvms.constants import INVITABLE_ROLES, INVITATION_STATUSES, INVITATION_TTL_DAYS, MIN_PASSWORD_LENGTH
from app.cvms.models import Company, Role, User
from app.cvms.modules.companies.service import add_user_to_company
from app.cvms.modules.invitations.models import Invitation
from app.cvms.tenancy import company_member_ids
from app.cvms.utils import (
    ValidationError,
    WorkflowError,
    is_valid_email,
    model_to_dict,
    to_json_value,
    utcnow,
    validate_choice,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

INVITATION_FIELDS = (
    "id",
    "company_id",
    "email",
    "role",
    "token",
    "expires_at",
    "accepted_at",
    "invited_by_user_id",
    "accepted_by_user_id",
    "created_at",
)


def effective_status(inv: Invitation, now: datetime | None = None) -> str:
    """A pending invitation past its expiry reads as expired."""
    if inv.status == "pending" and inv.expires_at <= (now or utcnow()):
        return "expired"
    return inv.status


def invitation_to_dict(inv: Invitation) -> dict:
    data = model_to_dict(inv, INVITATION_FIELDS)
    data["status"] = effective_status(inv)
    data["invited_by_email"] = inv.invited_by.email if inv.invited_by else None
    return data


def public_invitation_dict(inv: Invitation) -> dict:
    """What the invitee sees before accepting (no ids, no token)."""
    return {
        "email": inv.email,
        "role": inv.role,
        "company_name": inv.company.name if inv.company else None,
        "expires_at": to_json_value(inv.expires_at),
    }


def list_invitations(s: "Session", company_id: int, status: str | None = None) -> list[Invitation]:
    rows = (
        s.query(Invitation)
        .filter(Invitation.company_id == company_id)
        .order_by(Invitation.created_at.desc(), Invitation.id.desc())
        .all()
    )
    if status:
        rows = [inv for inv in rows if effective_status(inv) == status]
    return rows


def _pending_for(s: "Session", company_id: int, email: str) -> Invitation | None:
    now = utcnow()
    for inv in s.query(Invitation).filter(Invitation.company_id == company_id, Invitation.email == email):
        if effective_status(inv, now) == "pending":
            return inv
    return None


def _is_member(s: "Session", company_id: int, email: str) -> bool:
    user = s.query(User).filter(User.email == email).one_or_none()
    return user is not None and user.id in company_member_ids(s, company_id)


def validate_invitation_payload(s: "Session", company: Company, payload: dict) -> list[ValidationError]:
    errors: list[ValidationError] = []
    email = (str(payload.get("email") or "")).strip().lower()
    if not is_valid_email(email):
        errors.append(ValidationError("email", "A valid email is required."))
    elif _is_member(s, company.id, email):
        errors.append(ValidationError("email", "This user is already part of the company."))
    elif _pending_for(s, company.id, email) is not None:
        errors.append(ValidationError("email", "A pending invitation already exists for this email."))
    validate_choice(errors, "role", (str(payload.get("role") or "")).strip() or None, INVITABLE_ROLES)
    return errors


def validate_status_filter(status: str | None) -> list[ValidationError]:
    errors: list[ValidationError] = []
    validate_choice(errors, "status", status, INVITATION_STATUSES)
    return errors


def create_invitation(
    s: "Session", company: Company, payload: dict, actor: User, *, ttl_days: int = INVITATION_TTL_DAYS
) -> Invitation:
    now = utcnow()
    inv = Invitation(
        company_id=company.id,
        email=(str(payload.get("email") or "")).strip().lower(),
        role=(str(payload.get("role") or "")).strip() or "reader",
        token=secrets.token_urlsafe(32),
        status="pending",
        expires_at=now + timedelta(days=ttl_days),
        invited_by_user_id=actor.id,
        created_at=now,
    )
    s.add(inv)
    s.flush()
    s.refresh(inv)
    record_event(
        s,
        actor=actor,
        action="invitation.create",
        entity_type="Invitation",
        entity_id=str(inv.id),
        company_id=company.id,
        metadata={"email": inv.email, "role": inv.role, "expires_at": inv.expires_at.isoformat()},
    )
    logger.info("Invitation created (company_id=%s email=%s role=%s)", company.id, inv.email, inv.role)
    return inv


def cancel_invitation(s: "Session", inv: Invitation, actor: User, reason: str | None = None) -> Invitation:
    status = effective_status(inv)
    if status != "pending":
        raise WorkflowError(f"Only pending invitations can be cancelled (status is {status}).")
    inv.status = "cancelled"
    record_event(
        s,
        actor=actor,
        action="invitation.cancel",
        entity_type="Invitation",
        entity_id=str(inv.id),
        company_id=inv.company_id,
        reason=reason,
        metadata={"email": inv.email},
    )
    return inv


def resend_invitation(s: "Session", inv: Invitation, actor: User) -> Invitation:
    """Retire the old token (pending or expired) and issue a fresh one for the same email and role."""
    if inv.status != "pending":
        raise WorkflowError(f"Only pending or expired invitations can be resent (status is {inv.status}).")
    if _is_member(s, inv.company_id, inv.email):
        raise WorkflowError("This user is already part of the company.")
    inv.status = "cancelled"
    s.flush()
    fresh = create_invitation(s, inv.company, {"email": inv.email, "role": inv.role}, actor)
    record_event(
        s,
        actor=actor,
        action="invitation.resend",
        entity_type="Invitation",
        entity_id=str(fresh.id),
        company_id=inv.company_id,
        metadata={"email": inv.email, "replaces": inv.id},
    )
    return fresh


def open_invitation(s: "Session", token: str) -> Invitation | None:
    """The invitation behind token, only while it can still be accepted."""
    token = (token or "").strip()
    if not token:
        return None
    inv = s.query(Invitation).filter(Invitation.token == token).one_or_none()
    if inv is None or effective_status(inv) != "pending":
        return None
    return inv


def validate_signup_payload(payload: dict) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if len(str(payload.get("password") or "")) < MIN_PASSWORD_LENGTH:
        errors.append(ValidationError("password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters."))
    return errors


def register_invited_user(s: "Session", inv: Invitation, payload: dict) -> User:
    """Create the invitee's account (no roles yet; accepting grants the invited one)."""
    now = utcnow()
    user = User(
        email=inv.email,
        password_hash=generate_password_hash(str(payload.get("password") or "")),
        full_name=(str(payload.get("full_name") or "")).strip() or None,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    user.roles = []
    s.add(user)
    s.flush()
    record_event(
        s,
        actor=user,
        action="user.create",
        entity_type="User",
        entity_id=str(user.id),
        company_id=inv.company_id,
        metadata={"email": user.email, "invitation_id": inv.id},
    )
    return user


def accept_invitation(s: "Session", inv: Invitation, user: User) -> Invitation:
    """Join the company with the invited role. Roles are account-wide, so the role is added, never swapped."""
    if effective_status(inv) != "pending":
        raise WorkflowError("Invitation not found or expired.")
    if user.email.lower() != inv.email.lower():
        raise WorkflowError("This invitation was sent to a different email address.")

    add_user_to_company(s, inv.company, user, user)
    if inv.role not in user.role_keys:
        role = s.query(Role).filter(Role.key == inv.role).one_or_none()
        if role is not None:
            user.roles = [*user.roles, role]
    inv.status = "accepted"
    inv.accepted_at = utcnow()
    inv.accepted_by_user_id = user.id
    record_event(
        s,
        actor=user,
        action="invitation.accept",
        entity_type="Invitation",
        entity_id=str(inv.id),
        company_id=inv.company_id,
        metadata={"email": inv.email, "role": inv.role},
    )
    return inv
