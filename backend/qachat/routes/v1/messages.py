# backend/qachat/routes/v1/messages.py
"""
Messages routes - API v1

    GET /{message_id}/reactions   -> Grouped reactions
    POST /{message_id}/reactions  -> Toggle a reaction (socket fallback)
"""

from fastapi import APIRouter, Depends

from ...api.dependencies.auth import get_current_user
from ...api.dependencies.services import get_reaction_service
from ...models.user import User
from ...schemas.message_requests import ToggleReactionRequest
from ...schemas.message_responses import ReactionStateResponse
from ...schemas.realtime import ReactionGroup
from ...services.reaction_service import ReactionService

router = APIRouter(tags=["messages-v1"])


@router.get("/{message_id}/reactions", response_model=list[ReactionGroup])
def get_reactions(
    message_id: int,
    current_user: User = Depends(get_current_user),
    service: ReactionService = Depends(get_reaction_service),
) -> list[ReactionGroup]:
    return [
        ReactionGroup.model_validate(group)
        for group in service.get_reactions(message_id, str(current_user.id))
    ]


@router.post("/{message_id}/reactions", response_model=ReactionStateResponse)
async def toggle_reaction(
    message_id: int,
    request: ToggleReactionRequest,
    current_user: User = Depends(get_current_user),
    service: ReactionService = Depends(get_reaction_service),
) -> ReactionStateResponse:
    """
    Toggle the caller's reaction.

    The resulting set is broadcast as ``reaction_updated`` to every
    participant so concurrent toggles converge on the same state.
    """
    state = await service.toggle(message_id, str(current_user.id), request.emoji)
    return ReactionStateResponse(
        message_id=state.message_id,
        conversation_key=state.conversation_key,
        action=state.action.value,
        reactions=[ReactionGroup.model_validate(g) for g in state.reactions],
    )
