from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class InvoiceLineIn(BaseModel):
    line_number: Optional[int] = Field(default=None, ge=1)
    description: Optional[str] = None
    quantity: float = 1.0
    unit_price: float = 0.0
    line_total: float
    vat_rate: Optional[float] = None
    vat_amount: Optional[float] = None


class InvoiceIn(BaseModel):
    client_company_id: int
    external_id: Optional[str] = None
    type: str = "purchase"
    issue_date: datetime
    due_date: Optional[datetime] = None
    total_amount: float
    tax_amount: Optional[float] = None
    net_amount: Optional[float] = None
    currency: str = "TRY"
    counterparty_name: Optional[str] = None
    counterparty_tax_number: Optional[str] = None
    status: str = "draft"
    lines: List[InvoiceLineIn] = []


class InvoiceUpdate(BaseModel):
    """Partial update; omitted fields keep their value."""
    client_company_id: Optional[int] = None
    external_id: Optional[str] = None
    type: Optional[str] = None
    issue_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    total_amount: Optional[float] = None
    tax_amount: Optional[float] = None
    net_amount: Optional[float] = None
    currency: Optional[str] = None
    counterparty_name: Optional[str] = None
    counterparty_tax_number: Optional[str] = None
    status: Optional[str] = None
    lines: Optional[List[InvoiceLineIn]] = None


class InvoiceLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_number: int
    description: Optional[str] = None
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    line_total: Optional[float] = None
    vat_rate: Optional[float] = None
    vat_amount: Optional[float] = None


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    client_company_id: int
    external_id: Optional[str] = None
    type: str
    issue_date: datetime
    due_date: Optional[datetime] = None
    total_amount: float
    tax_amount: Optional[float] = None
    net_amount: Optional[float] = None
    currency: str
    counterparty_name: Optional[str] = None
    counterparty_tax_number: Optional[str] = None
    status: str
    source: str
    source_modified: Optional[str] = None

    lines: List[InvoiceLineOut] = []


class DuplicateOut(BaseModel):
    invoice_id: int
    external_id: Optional[str] = None
    issue_date: str
    total_amount: float


class SimilarInvoiceOut(BaseModel):
    invoice_id: int
    external_id: str
    similarity: float
