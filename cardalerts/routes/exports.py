from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from cardalerts.core.auth_dependencies import require_ingest_secret, resolve_user_id
from cardalerts.core.database import get_db
from cardalerts.exports.ledger_export import (
    LEDGER_COLUMNS,
    XLSX_MEDIA_TYPE,
    export_csv,
    export_xlsx,
    normalize_ledger_row,
)
from cardalerts.services.transaction_service import list_transactions


export_router = APIRouter(prefix="/api/v1", tags=["Export Reports"])


@export_router.get("/exports/ledger")
def export_ledger(
    user_id: str | None = None,
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
    start_date: date | None = None,
    end_date: date | None = None,
    db: Session = Depends(get_db),
    _: str = Depends(require_ingest_secret),
):
    owner = resolve_user_id(user_id)
    query = list_transactions(db, owner, start_date=start_date, end_date=end_date)
    rows = [normalize_ledger_row(tx) for tx in query.yield_per(1000)]

    if not rows:
        raise HTTPException(404, "No ledger rows found for given filters")

    if format == "csv":
        file = export_csv(rows, LEDGER_COLUMNS)
        filename = f"ledger_{owner}.csv"
        media_type = "text/csv"
    else:
        file = export_xlsx(rows, LEDGER_COLUMNS, "Ledger")
        filename = f"ledger_{owner}.xlsx"
        media_type = XLSX_MEDIA_TYPE

    return StreamingResponse(
        file,
        media_type=media_type,
        headers={
            "Content-Disposition":
            f"attachment; filename={filename}"
        },
    )
