# backend/qachat/routes/v1/contacts.py
"""
Contacts routes - API v1

Eligible direct-message recipients for the caller.
"""

from fastapi import APIRouter, Depends

from ...api.dependencies.auth import get_current_user
from ...api.dependencies.services import get_directory_service
from ...models.user import User
from ...schemas.message_responses import ContactListResponse, ContactResponse
from ...services.directory_service import DirectoryService

router = APIRouter(tags=["contacts-v1"])


@router.get("", response_model=ContactListResponse)
def list_contacts(
    current_user: User = Depends(get_current_user),
    service: DirectoryService = Depends(get_directory_service),
) -> ContactListResponse:
    """Active identities other than the caller, ordered by name."""
    return ContactListResponse(
        contacts=[
            ContactResponse(
                id=str(entry.user.id),
                name=str(entry.user.name),
                email=str(entry.user.email),
                role=str(entry.user.role),
                online=entry.online,
            )
            for entry in service.list_contacts(str(current_user.id))
        ]
    )
