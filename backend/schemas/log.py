from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict

# One audit entry; user_id keeps the id the actor had at the time
class LogEntry(BaseModel):
    id: int
    user_id: Optional[int] = None
    action: str
    resource: str
    status: str
    ip: Optional[str] = None
    ts: datetime
    meta: Optional[Any] = None

    model_config = ConfigDict(from_attributes=True)

class LogPage(BaseModel):
    items: List[LogEntry]
    total: int
    page: int
    page_size: int
