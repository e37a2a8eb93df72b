"""
Request bodies for the broker HTTP API.
"""
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    service_name: str = Field(..., min_length=1, alias="serviceName")
    url: str = Field(..., min_length=1)
    health_url: Optional[str] = Field(default=None, alias="healthURL")


class SubscribeRequest(BaseModel):
    service: str = Field(..., min_length=1)
    endpoint: str = Field(..., min_length=1)


class TransactionBody(BaseModel):
    """Participants are prepared and committed in list order"""
    services: List[str] = Field(..., min_length=1)
    data: Any = None
