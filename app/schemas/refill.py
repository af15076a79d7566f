from uuid import UUID
from pydantic import BaseModel


class RefillRunResponse(BaseModel):
    success: bool
    processed: int
    failed: int
    refill_ids: list[UUID]
