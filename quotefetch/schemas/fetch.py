from pydantic import BaseModel, Field


class FetchRequest(BaseModel):
    symbols: list[str] = Field(default_factory=list)


class FetchAccepted(BaseModel):
    pending_count: int
