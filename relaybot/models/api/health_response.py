from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    timestamp: float
    env_check: dict[str, str]
    redis: dict[str, object] | None = None
