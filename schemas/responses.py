from pydantic import BaseModel
from typing import Any, Dict, Generic, TypeVar, Optional

T = TypeVar("T")

class ApiResponse(BaseModel, Generic[T]):
    data: Optional[T] = None
    meta: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
