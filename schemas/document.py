from datetime import datetime
from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, List, Optional


class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    client_company_id: Optional[int] = None
    type: str
    original_file_name: str
    mime_type: Optional[str] = None
    status: str
    processing_error_message: Optional[str] = None
    related_invoice_id: Optional[int] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class JobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    attempts_count: int
    last_error_message: Optional[str] = None
    last_attempt_at: Optional[datetime] = None


class ParsedDataOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    document_type: str
    fields: Dict[str, Any] = {}
    parser_version: str


class RiskFeaturesOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    features: Dict[str, Any] = {}
    risk_flags: List[Dict[str, Any]] = []
    risk_score: Optional[float] = None
    generated_at: Optional[datetime] = None


class DocumentScoreOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    score: float
    severity: str
    triggered_rule_codes: List[str] = []
    generated_at: datetime


class DocumentDetailOut(DocumentOut):
    job: Optional[JobOut] = None
    parsed_data: Optional[ParsedDataOut] = None
    risk_features: Optional[RiskFeaturesOut] = None
    risk_score: Optional[DocumentScoreOut] = None
