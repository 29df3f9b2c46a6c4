"""Contact form endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from ganj.core.logging import get_logger
from ganj.dependencies import get_contact_service
from ganj.schemas.common import ErrorResponse
from ganj.schemas.contact import ContactRequest, ContactResponse
from ganj.services.contact import ContactService

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "",
    response_model=ContactResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a message",
    description=(
        "Stores the message and emails it to the site owner when email is "
        "configured. Email failures do not fail the request."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Invalid submission"},
        500: {"model": ErrorResponse, "description": "Message could not be stored"},
    },
)
async def submit_contact(
    request: ContactRequest,
    contact: Annotated[ContactService, Depends(get_contact_service)],
) -> ContactResponse:
    message_id = await contact.submit(
        name=request.name, email=request.email, message=request.message
    )
    logger.debug("contact_submitted", message_id=message_id)
    return ContactResponse()
