"""
Audit trail endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, Query

from .system import LendingSystem, get_lending_system
from ..audit import AuditEventType


router = APIRouter()


@router.get("/verify")
async def verify_audit_integrity(system: LendingSystem = Depends(get_lending_system)):
    """Check the hash chain of the whole audit trail"""
    return system.audit_trail.verify_integrity()


@router.get("/{entity_type}/{entity_id}")
async def get_entity_events(
    entity_type: str,
    entity_id: int,
    event_type: Optional[str] = Query(None),
    system: LendingSystem = Depends(get_lending_system)
):
    """Audit events of one loan or repayment, oldest first"""
    wanted = None
    if event_type is not None:
        try:
            wanted = AuditEventType(event_type)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown event type: {event_type}")

    events = system.audit_trail.get_events_for_entity(entity_type, entity_id, wanted)
    return {
        "events": [
            {
                "id": event.id,
                "event_type": event.event_type.value,
                "entity_type": event.entity_type,
                "entity_id": event.entity_id,
                "created_at": event.created_at.isoformat(),
                "metadata": event.metadata
            }
            for event in events
        ]
    }
