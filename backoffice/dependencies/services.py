from __future__ import annotations

from fastapi import HTTPException, Request

from backoffice.audit.service import AuditLogService
from backoffice.realtime.hub import TicketHub
from backoffice.services.postgres import PostgresConnectionTester
from backoffice.tickets.service import TicketService


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


async def get_audit_log_service(request: Request) -> AuditLogService:
    service = getattr(request.app.state, "audit_log_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Audit log service is not configured")
    return service


async def get_postgres_tester(request: Request) -> PostgresConnectionTester:
    tester = getattr(request.app.state, "postgres_tester", None)
    if tester is None:
        raise HTTPException(status_code=503, detail="Database connection tester is not configured")
    return tester


def get_ticket_hub(state: object) -> TicketHub:
    hub = getattr(state, "ticket_hub", None)
    if hub is None:
        raise RuntimeError("Ticket hub is not configured")
    return hub
