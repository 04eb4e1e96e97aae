from sqlalchemy import Column, Integer, String, DateTime, Float, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from models.base import Base


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    client_company_id = Column(Integer, ForeignKey("client_companies.id"), index=True, nullable=False)

    external_id = Column(String(140), index=True, nullable=True)  # invoice number
    type = Column(String(32), nullable=False, default="purchase")
    issue_date = Column(DateTime, index=True, nullable=False)
    due_date = Column(DateTime, nullable=True)

    total_amount = Column(Float, nullable=False, default=0.0)
    tax_amount = Column(Float, nullable=True)
    net_amount = Column(Float, nullable=True)
    currency = Column(String(8), nullable=False, default="TRY")

    counterparty_name = Column(String(255), index=True, nullable=True)
    counterparty_tax_number = Column(String(32), index=True, nullable=True)

    status = Column(String(32), nullable=False, default="draft")
    source = Column(String(32), nullable=False, default="manual")  # manual | sync | document

    # accounting-system sync bookkeeping
    source_modified = Column(String(32), index=True, nullable=True)
    lines_hash = Column(String(64), nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    client_company = relationship("ClientCompany", back_populates="invoices")
    lines = relationship(
        "InvoiceLine",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLine.line_number",
    )


class InvoiceLine(Base):
    __tablename__ = "invoice_lines"
    __table_args__ = (
        UniqueConstraint("invoice_id", "line_number", name="uq_invoice_line"),
    )

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)

    line_number = Column(Integer, nullable=False)
    description = Column(String(255), nullable=True)

    quantity = Column(Float, nullable=False, default=1.0)
    unit_price = Column(Float, nullable=False, default=0.0)
    line_total = Column(Float, nullable=False, default=0.0)
    vat_rate = Column(Float, nullable=True)
    vat_amount = Column(Float, nullable=True)

    invoice = relationship("Invoice", back_populates="lines")
