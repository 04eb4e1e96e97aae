from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CompanyIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    tax_number: Optional[str] = Field(default=None, max_length=32)


class CompanyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    tax_number: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
