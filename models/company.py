from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from models.base import Base


class ClientCompany(Base):
    __tablename__ = "client_companies"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)

    name = Column(String(255), nullable=False)
    tax_number = Column(String(32), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    invoices = relationship("Invoice", back_populates="client_company")
    transactions = relationship("Transaction", back_populates="client_company")
