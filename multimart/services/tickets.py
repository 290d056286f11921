import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from multimart.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationFailed,
)
from multimart.models import IssueType, Ticket, TicketStatus, User

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def _parse(enum_cls, value, label):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationFailed(f"Invalid {label}: {value}")


def get_ticket(db: Session, ticket_id: int) -> Ticket:
    ticket = db.query(Ticket).filter(Ticket.id == ticket_id).first()
    if not ticket:
        raise NotFoundError("Ticket not found")
    return ticket


def get_own_ticket(db: Session, ticket_id: int, user_id: int) -> Ticket:
    ticket = get_ticket(db, ticket_id)
    if ticket.user_id != user_id:
        raise PermissionDeniedError("You do not have access to this ticket")
    return ticket


# =====================================================
# OWNER
# =====================================================

def create_ticket(db: Session, user: User, issue_type: str, subject: str, description: str) -> Ticket:
    ticket = Ticket(
        user_id=user.id,
        user_type=user.role.value,
        issue_type=_parse(IssueType, issue_type, "issue type"),
        subject=subject,
        description=description,
        status=TicketStatus.open,
    )
    db.add(ticket)
    db.commit()
    db.refresh(ticket)

    logger.info("Ticket created | ticket_id=%s user_id=%s", ticket.id, user.id)
    return ticket


def list_user_tickets(db: Session, user_id: int, status: str | None = None):
    query = db.query(Ticket).filter(Ticket.user_id == user_id)
    if status:
        query = query.filter(Ticket.status == _parse(TicketStatus, status, "status"))
    return query.order_by(Ticket.created_at.desc(), Ticket.id.desc()).all()


# =====================================================
# ADMIN
# =====================================================

def list_all_tickets(
    db: Session,
    status: str | None = None,
    issue_type: str | None = None,
    user_type: str | None = None,
):
    query = db.query(Ticket)
    if status:
        query = query.filter(Ticket.status == _parse(TicketStatus, status, "status"))
    if issue_type:
        query = query.filter(Ticket.issue_type == _parse(IssueType, issue_type, "issue type"))
    if user_type:
        query = query.filter(Ticket.user_type == user_type)
    return query.order_by(Ticket.created_at.desc(), Ticket.id.desc()).all()


def respond_to_ticket(
    db: Session,
    ticket_id: int,
    admin_id: int,
    response: str,
    status: str | None = None,
) -> Ticket:
    ticket = get_ticket(db, ticket_id)
    if ticket.status == TicketStatus.closed:
        raise ConflictError("Ticket is already closed")

    target = _parse(TicketStatus, status, "status") if status else TicketStatus.in_progress

    ticket.admin_response = response
    ticket.admin_id = admin_id
    ticket.status = target
    if target == TicketStatus.resolved and not ticket.resolved_at:
        ticket.resolved_at = _now()
    elif target == TicketStatus.closed and not ticket.closed_at:
        ticket.closed_at = _now()
    db.commit()
    db.refresh(ticket)

    logger.info(
        "Ticket responded | ticket_id=%s admin_id=%s status=%s",
        ticket.id,
        admin_id,
        target.value,
    )
    return ticket


def resolve_ticket(db: Session, ticket_id: int, admin_id: int) -> Ticket:
    ticket = get_ticket(db, ticket_id)
    if ticket.status in (TicketStatus.resolved, TicketStatus.closed):
        raise ConflictError(f"Ticket is already {ticket.status.value}")

    ticket.status = TicketStatus.resolved
    ticket.admin_id = admin_id
    ticket.resolved_at = _now()
    db.commit()
    db.refresh(ticket)

    logger.info("Ticket resolved | ticket_id=%s admin_id=%s", ticket.id, admin_id)
    return ticket


def close_ticket(db: Session, ticket: Ticket) -> Ticket:
    """Close a ticket; callers check ownership or admin rights first."""
    if ticket.status == TicketStatus.closed:
        raise ConflictError("Ticket is already closed")

    ticket.status = TicketStatus.closed
    ticket.closed_at = _now()
    db.commit()
    db.refresh(ticket)

    logger.info("Ticket closed | ticket_id=%s", ticket.id)
    return ticket


def serialize_ticket(t: Ticket) -> dict:
    return {
        "id": t.id,
        "userId": t.user_id,
        "userType": t.user_type,
        "issueType": t.issue_type.value,
        "subject": t.subject,
        "description": t.description,
        "status": t.status.value,
        "adminResponse": t.admin_response,
        "adminId": t.admin_id,
        "resolvedAt": t.resolved_at,
        "closedAt": t.closed_at,
        "createdAt": t.created_at,
        "updatedAt": t.updated_at,
    }
