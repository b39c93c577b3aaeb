from pydantic import BaseModel, Field


class VerifySubmitResponse(BaseModel):
    """Result shown by the challenge page after submitting a proof."""

    success: bool = Field(..., description="Whether verification passed")
    message: str | None = Field(default=None, description="User-facing success message")
    error: str | None = Field(default=None, description="Reason shown when verification failed")
