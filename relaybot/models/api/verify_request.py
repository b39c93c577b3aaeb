from pydantic import BaseModel, Field


class VerifySubmitRequest(BaseModel):
    """Body posted by the challenge page."""

    token: str = Field(..., min_length=1, description="Turnstile response token")
