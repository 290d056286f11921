from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from multimart.database import get_db
from multimart.dependencies import require_admin, require_seller_or_delivery_partner
from multimart.errors import ok
from multimart.models import User
from multimart.services import tickets as ticket_service

router = APIRouter(tags=["tickets"])


# =====================================================
# SCHEMAS
# =====================================================

class TicketCreate(BaseModel):
    issue_type: str
    subject: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)


class TicketResponse(BaseModel):
    response: str = Field(min_length=1)
    status: Optional[str] = None


# =====================================================
# OWNER (SELLER / DELIVERY PARTNER)
# =====================================================

@router.post("/tickets", status_code=status.HTTP_201_CREATED)
def create_ticket(
    payload: TicketCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_seller_or_delivery_partner),
):
    ticket = ticket_service.create_ticket(
        db, user, payload.issue_type, payload.subject, payload.description
    )
    return ok("Ticket created successfully", ticket_service.serialize_ticket(ticket))


@router.get("/tickets")
def list_my_tickets(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_seller_or_delivery_partner),
):
    tickets = ticket_service.list_user_tickets(db, user.id, status)
    return ok("Tickets retrieved successfully", [ticket_service.serialize_ticket(t) for t in tickets])


@router.get("/tickets/{ticket_id}")
def get_my_ticket(
    ticket_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_seller_or_delivery_partner),
):
    ticket = ticket_service.get_own_ticket(db, ticket_id, user.id)
    return ok("Ticket retrieved successfully", ticket_service.serialize_ticket(ticket))


@router.post("/tickets/{ticket_id}/close")
def close_my_ticket(
    ticket_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_seller_or_delivery_partner),
):
    ticket = ticket_service.get_own_ticket(db, ticket_id, user.id)
    ticket = ticket_service.close_ticket(db, ticket)
    return ok("Ticket closed successfully", ticket_service.serialize_ticket(ticket))


# =====================================================
# ADMIN
# =====================================================

@router.get("/admin/tickets")
def list_all_tickets(
    status: Optional[str] = None,
    issue_type: Optional[str] = None,
    user_type: Optional[str] = None,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    tickets = ticket_service.list_all_tickets(db, status, issue_type, user_type)
    return ok("Tickets retrieved successfully", [ticket_service.serialize_ticket(t) for t in tickets])


@router.get("/admin/tickets/{ticket_id}")
def get_ticket(
    ticket_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    ticket = ticket_service.get_ticket(db, ticket_id)
    return ok("Ticket retrieved successfully", ticket_service.serialize_ticket(ticket))


@router.post("/admin/tickets/{ticket_id}/respond")
def respond_to_ticket(
    ticket_id: int,
    payload: TicketResponse,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    ticket = ticket_service.respond_to_ticket(
        db, ticket_id, admin.id, payload.response, payload.status
    )
    return ok("Response added successfully", ticket_service.serialize_ticket(ticket))


@router.post("/admin/tickets/{ticket_id}/resolve")
def resolve_ticket(
    ticket_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    ticket = ticket_service.resolve_ticket(db, ticket_id, admin.id)
    return ok("Ticket resolved successfully", ticket_service.serialize_ticket(ticket))


@router.post("/admin/tickets/{ticket_id}/close")
def close_ticket(
    ticket_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    ticket = ticket_service.get_ticket(db, ticket_id)
    ticket = ticket_service.close_ticket(db, ticket)
    return ok("Ticket closed successfully", ticket_service.serialize_ticket(ticket))
