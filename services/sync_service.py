import asyncio
import logging
from datetime import datetime
from typing import Any, Dict

from sqlalchemy.orm import Session

from core.config import Settings, settings
from queries.companies import require_company
from queries.invoices import get_invoice_by_external_id
from queries.sync_state import get_state, set_state
from services.accounting_client import AccountingClient
from services.hasher import lines_hash
from services.invoice_service import InvoiceService
from services.parser import parse_date
from services.risk_calculation import RiskCalculationProcessor

log = logging.getLogger("sync")


SYNC_STATE_KEY = "invoice_last_modified"


def _to_datetime(raw: Any) -> datetime | None:
    d = parse_date(raw)
    return datetime(d.year, d.month, d.day) if d else None


def invoice_payload(details: Dict[str, Any], fallback_id: str) -> Dict[str, Any]:
    """
    Map an accounting-system invoice onto invoice fields.
    """
    issue_date = _to_datetime(details.get("issue_date"))
    if issue_date is None:
        raise ValueError(f"invoice {fallback_id} has no valid issue_date")

    return {
        "external_id": str(details.get("number") or details.get("id") or fallback_id),
        "type": details.get("type") or "purchase",
        "issue_date": issue_date,
        "due_date": _to_datetime(details.get("due_date")),
        "total_amount": float(details.get("total_amount") or 0),
        "tax_amount": details.get("tax_amount"),
        "net_amount": details.get("net_amount"),
        "currency": details.get("currency") or "TRY",
        "counterparty_name": details.get("counterparty_name"),
        "counterparty_tax_number": details.get("counterparty_tax_number"),
        "status": details.get("status") or "draft",
    }


class SyncService:
    def __init__(
        self,
        config: Settings = settings,
        client: AccountingClient | None = None,
        invoices: InvoiceService | None = None,
        risk_calculation: RiskCalculationProcessor | None = None,
    ) -> None:
        self.config = config
        self.client = client or AccountingClient(config)
        self.invoices = invoices or InvoiceService()
        self.risk_calculation = risk_calculation
        self._lock = asyncio.Lock()

    async def run_one_cycle(self, db: Session, tenant_id: str, client_company_id: int) -> dict:
        """
        Cycle rule:
        - bring latest changed invoices list
        - choose changed invoices using last_modified + DB compare
        - fetch invoice details only for changed ones
        - upsert DB only if modified or line hash changed
        """
        if self._lock.locked():
            return {"status": "skipped", "reason": "sync already running"}

        async with self._lock:
            require_company(db, tenant_id, client_company_id)
            last_modified = get_state(db, tenant_id, SYNC_STATE_KEY)

            try:
                rows = await self.client.list_changed_invoices(
                    modified_since=last_modified,
                    limit=self.config.SYNC_MAX_CHANGED_PER_CYCLE,
                )
            except Exception as e:
                db.rollback()
                log.exception("accounting list_changed_invoices failed: %s", e)
                return {
                    "status": "error",
                    "step": "list_changed_invoices",
                    "last_modified_before": last_modified,
                    "error": str(e),
                }

            changed: list[dict] = []
            newest_seen = last_modified

            for r in rows or []:
                inv_id = r.get("id")
                modified = r.get("modified")
                if not inv_id:
                    continue

                if modified and (newest_seen is None or modified > newest_seen):
                    newest_seen = modified

                if last_modified and modified and modified <= last_modified:
                    continue

                changed.append({"invoice_id": str(inv_id), "modified": modified})

            updated_count = 0
            skipped_same_hash = 0
            failed_invoices: list[str] = []

            for meta in changed:
                inv_id = meta["invoice_id"]

                try:
                    details = await self.client.get_invoice(inv_id)
                    data = invoice_payload(details, inv_id)

                    seen: set[int] = set()
                    lines: list[dict] = []
                    for pos, ln in enumerate(details.get("lines") or [], start=1):
                        line_number = int(ln.get("line_number") or pos)
                        if line_number in seen:
                            continue
                        seen.add(line_number)
                        lines.append({**ln, "line_number": line_number})
                    data["lines"] = lines

                    h = lines_hash(lines)

                    existing = get_invoice_by_external_id(db, tenant_id, client_company_id, data["external_id"])
                    if existing and existing.source_modified == meta["modified"] and existing.lines_hash == h:
                        skipped_same_hash += 1
                        continue

                    self.invoices.upsert_synced(
                        db,
                        tenant_id=tenant_id,
                        client_company_id=client_company_id,
                        data=data,
                        source_modified=meta["modified"],
                        lines_hash=h,
                    )
                    updated_count += 1

                except Exception as e:
                    # keep session usable for the next invoices in the same cycle
                    db.rollback()
                    failed_invoices.append(inv_id)
                    log.exception("sync failed for invoice %s: %s", inv_id, e)
                    continue

            try:
                if newest_seen and newest_seen != last_modified:
                    set_state(db, tenant_id, SYNC_STATE_KEY, newest_seen)
            except Exception as e:
                db.rollback()
                log.exception("failed updating sync cursor: %s", e)
                return {
                    "status": "error",
                    "step": "update_cursor",
                    "last_modified_before": last_modified,
                    "last_modified_after": newest_seen,
                    "error": str(e),
                }

            risk_recalculated = False
            if updated_count and self.risk_calculation is not None:
                try:
                    self.risk_calculation.calculate_company(db, tenant_id, client_company_id)
                    risk_recalculated = True
                except Exception as e:
                    db.rollback()
                    log.exception("company risk recalculation failed after sync: %s", e)

            return {
                "status": "ok",
                "last_modified_before": last_modified,
                "last_modified_after": newest_seen,
                "candidates": len(changed),
                "db_updated": updated_count,
                "skipped_same_hash": skipped_same_hash,
                "failed_invoices": failed_invoices,
                "risk_recalculated": risk_recalculated,
            }
