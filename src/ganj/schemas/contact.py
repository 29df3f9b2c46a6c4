"""Contact form schemas.

Fields are optional at the schema level; presence, format and length are
checked by the contact service so that every rejection carries the same
localized messages.
"""

from pydantic import BaseModel, ConfigDict, Field

from ganj.schemas.common import BaseSchema


class ContactRequest(BaseSchema):
    name: str | None = Field(None, description="Sender name (max 120)")
    email: str | None = Field(None, description="Sender email (max 200)")
    message: str | None = Field(None, description="Message body (max 5000)")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "مهران",
                "email": "reader@example.com",
                "message": "سلام، ممنون از گنج.",
            }
        }
    )


class ContactResponse(BaseModel):
    ok: bool = True
