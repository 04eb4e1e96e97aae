from sqlalchemy import Boolean, Column, Integer, Float, String, DateTime, Text, ForeignKey, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from models.base import Base


class Document(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    client_company_id = Column(Integer, ForeignKey("client_companies.id"), index=True, nullable=True)

    type = Column(String(32), nullable=False)  # INVOICE | BANK_STATEMENT | RECEIPT | OTHER
    original_file_name = Column(String(255), nullable=False)
    mime_type = Column(String(128), nullable=True)
    storage_path = Column(String(512), nullable=False)

    # UPLOADED -> PROCESSING -> PROCESSED / FAILED
    status = Column(String(32), nullable=False, default="UPLOADED")
    processing_error_message = Column(Text, nullable=True)

    related_invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)
    processed_at = Column(DateTime, nullable=True)

    related_invoice = relationship("Invoice")
    job = relationship("DocumentProcessingJob", back_populates="document", uselist=False, cascade="all, delete-orphan")
    ocr_result = relationship("DocumentOCRResult", uselist=False, cascade="all, delete-orphan")
    parsed_data = relationship("DocumentParsedData", uselist=False, cascade="all, delete-orphan")
    risk_features = relationship("DocumentRiskFeatures", uselist=False, cascade="all, delete-orphan")
    risk_score = relationship("DocumentRiskScore", back_populates="document", uselist=False, cascade="all, delete-orphan")


class DocumentProcessingJob(Base):
    __tablename__ = "document_processing_jobs"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), unique=True, nullable=False)

    # PENDING -> IN_PROGRESS -> SUCCESS | PENDING (retry) | FAILED
    status = Column(String(32), index=True, nullable=False, default="PENDING")
    attempts_count = Column(Integer, nullable=False, default=0)
    last_error_message = Column(Text, nullable=True)
    last_attempt_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    document = relationship("Document", back_populates="job")


class DocumentOCRResult(Base):
    __tablename__ = "document_ocr_results"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), unique=True, nullable=False)

    raw_text = Column(Text, nullable=False, default="")
    ocr_engine = Column(String(64), nullable=False)
    confidence = Column(Float, nullable=True)


class DocumentParsedData(Base):
    __tablename__ = "document_parsed_data"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), unique=True, nullable=False)

    document_type = Column(String(32), index=True, nullable=False)
    fields = Column(JSON, nullable=False, default=dict)
    parser_version = Column(String(32), nullable=False)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)


class DocumentRiskFeatures(Base):
    __tablename__ = "document_risk_features"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), unique=True, nullable=False)

    features = Column(JSON, nullable=False, default=dict)
    risk_flags = Column(JSON, nullable=False, default=list)  # [{code, severity, description, value?}]
    risk_score = Column(Float, nullable=True)

    generated_at = Column(DateTime, nullable=False)
