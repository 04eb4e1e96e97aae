import httpx
from core.config import Settings, settings


class AccountingClient:
    """
    REST client for the external accounting system.
    GET /api/invoices           -> {"data": [{"id", "modified", ...}]}
    GET /api/invoices/{id}      -> {"data": {..., "lines": [...]}}
    """

    def __init__(self, config: Settings = settings, timeout: float = 20.0) -> None:
        self.base = (config.ACCOUNTING_BASE_URL or "").rstrip("/")
        self.timeout = timeout
        self.headers = {"Accept": "application/json"}
        if config.ACCOUNTING_API_KEY:
            self.headers["Authorization"] = f"token {config.ACCOUNTING_API_KEY}:{config.ACCOUNTING_API_SECRET or ''}"

    async def list_changed_invoices(self, modified_since: str | None = None, limit: int = 50) -> list[dict]:
        """
        Minimal fields + modified for delta decisions, newest first.
        """
        params = {"limit": str(limit), "order_by": "modified desc"}
        if modified_since:
            params["modified_since"] = modified_since

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            r = await client.get(f"{self.base}/api/invoices", headers=self.headers, params=params)
            r.raise_for_status()
            return (r.json().get("data") or [])

    async def get_invoice(self, invoice_id: str) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            r = await client.get(f"{self.base}/api/invoices/{invoice_id}", headers=self.headers)
            r.raise_for_status()
            return (r.json().get("data") or {})
