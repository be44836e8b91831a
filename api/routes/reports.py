"""
api/routes/reports.py -- Report exports for plans that include them.

Routes:
  GET /api/reports/account/export  -- the caller's account and entitlements as CSV

Auth policy:
  require_entitlement("reports.export"): admins always pass; everyone else
  needs the entitlement from their plan or an admin-set override.
"""

from __future__ import annotations

import csv
import io

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import MessageResponse
from auth.dependencies import require_entitlement
from auth.models import Principal
from auth.store import UserStore

REPORTS_ENTITLEMENT = "reports.export"

router = APIRouter()

require_reports = require_entitlement(
    REPORTS_ENTITLEMENT,
    denied_message="Report exports are not enabled",
)

# Spreadsheet apps evaluate cells starting with these as formulas (CWE-1236).
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _csv_cell(value: str) -> str:
    """Neutralize spreadsheet formulas by prefixing a single quote."""
    if value.startswith(_FORMULA_PREFIXES):
        return "'" + value
    return value


def account_csv(rows: list[tuple[str, str]]) -> str:
    """Render (field, value) rows as a two-column CSV with a header."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(["field", "value"])
    for field, value in rows:
        writer.writerow([field, _csv_cell(value)])
    return buf.getvalue()


@router.get(
    "/reports/account/export",
    response_class=Response,
    responses={
        200: {"content": {"text/csv": {}}},
        401: {"model": MessageResponse},
        403: {"model": MessageResponse},
    },
)
def export_account(request: Request, principal: Principal = Depends(require_reports)) -> Response:
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(principal.id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found.")
    profile = user_store.get_user_profile(principal.id)
    entitlements = profile.entitlements if profile is not None else []

    rows = [
        ("id", user.id or ""),
        ("email", user.email),
        ("role", user.role),
        ("plan_id", user.plan_id),
        ("created_at", user.created_at or ""),
        ("entitlements", ";".join(entitlements)),
    ]
    return Response(
        content=account_csv(rows),
        media_type="text/csv",
        headers={
            "Content-Disposition": 'attachment; filename="account.csv"',
            "Cache-Control": "no-store",
        },
    )
