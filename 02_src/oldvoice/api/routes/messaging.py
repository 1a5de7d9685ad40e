"""Generic channel adapter: plain JSON in, plain text out."""

from pydantic import BaseModel, Field
from fastapi import APIRouter

from ...app import Application


class MessageRequest(BaseModel):
    """An inbound message from any channel."""

    identity: str = Field(..., min_length=1)
    text: str


class MessageResponse(BaseModel):
    """Reply text for the channel to deliver."""

    response: str


def create_messaging_router(app: Application) -> APIRouter:
    """Create messaging router."""
    router = APIRouter(prefix="/api", tags=["messaging"])

    @router.post("/messages", response_model=MessageResponse)
    async def send_message(request: MessageRequest) -> dict:
        """Advance the sender's dialogue. The orchestrator never raises."""
        response = await app.orchestrator.handle_incoming(request.identity, request.text)
        return {"response": response}

    return router
