from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session

from sitedocs.database import get_db
from sitedocs.dependencies import get_principal, get_registry
from sitedocs.principal import Principal
from sitedocs.services.calendar_service import Deadline, generate_deadlines_ics
from sitedocs.services.requirement_service import RegistrySnapshot
from sitedocs.services.submission_service import APPROVED, get_submission_status

router = APIRouter(tags=["calendar"])


@router.get("/submissions/me/calendar")
async def my_deadlines(
    site_id: str | None = None,
    principal: Principal = Depends(get_principal),
    registry: RegistrySnapshot = Depends(get_registry),
    db: Session = Depends(get_db),
):
    items = get_submission_status(db, registry, principal.id, principal.role, site_id)
    deadlines = [
        Deadline(
            code=item.requirement.code,
            title=item.requirement.name,
            due_date=item.due_date,
            status=item.status,
            is_required=item.is_required,
        )
        for item in items
        if item.due_date and item.status != APPROVED
    ]
    if not deadlines:
        raise HTTPException(status_code=404, detail="No upcoming deadlines")

    return Response(
        content=generate_deadlines_ics(principal.id, deadlines),
        media_type="text/calendar",
        headers={"Content-Disposition": 'attachment; filename="document_deadlines.ics"'},
    )
