"""
Queue wire payloads.

send_newsletter carries exactly {"content_id": str, "job_id": str}.
"""
import uuid
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, ValidationError

from newsletter.core.exceptions import PayloadError


class SendNewsletterPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    content_id: uuid.UUID
    job_id: uuid.UUID

    def encode(self) -> Dict[str, str]:
        return {"content_id": str(self.content_id), "job_id": str(self.job_id)}

    @classmethod
    def decode(cls, payload: Any) -> "SendNewsletterPayload":
        """Validate a delivered payload; anything malformed is a PayloadError."""
        if not isinstance(payload, dict):
            raise PayloadError(f"payload must be an object, got {type(payload).__name__}")
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise PayloadError(f"invalid send_newsletter payload: {e.errors(include_url=False)}") from e
