from sqlalchemy import Column, Integer, String, DateTime, Float, ForeignKey
from sqlalchemy.orm import relationship

from models.base import Base


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    client_company_id = Column(Integer, ForeignKey("client_companies.id"), index=True, nullable=False)

    date = Column(DateTime, index=True, nullable=False)
    description = Column(String(255), nullable=True)
    reference = Column(String(140), nullable=True)

    client_company = relationship("ClientCompany", back_populates="transactions")
    lines = relationship("TransactionLine", back_populates="transaction", cascade="all, delete-orphan")

    @property
    def amount(self) -> float:
        return sum(float(l.debit_amount or 0) + float(l.credit_amount or 0) for l in self.lines)


class TransactionLine(Base):
    __tablename__ = "transaction_lines"

    id = Column(Integer, primary_key=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False)

    account_code = Column(String(32), nullable=True)
    debit_amount = Column(Float, nullable=False, default=0.0)
    credit_amount = Column(Float, nullable=False, default=0.0)

    transaction = relationship("Transaction", back_populates="lines")
