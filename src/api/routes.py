"""API routes for the repository agent."""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from src.agent import ConversationManager, IterationLimitExceeded, ModelBackendError
from src.storage import ConversationStore, StoreError
from src.tools import CommandValidator, ToolRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


# Shared instances live on app.state, set up by the application lifespan


def get_manager(request: Request) -> ConversationManager:
    return request.app.state.manager


def get_store(request: Request) -> ConversationStore:
    return request.app.state.store


def get_validator(request: Request) -> CommandValidator:
    return request.app.state.validator


def get_registry(request: Request) -> ToolRegistry:
    return request.app.state.registry


# Request/Response models


class MessageRequest(BaseModel):
    """Request model for posting a user message."""

    text: str = Field(..., min_length=1, description="The user's message")
    channel_ref: str = Field(default="", description="Where the conversation lives")


class ToolResultModel(BaseModel):
    """A single tool execution from the agent loop."""

    invocation_id: str
    output: str
    is_error: bool


class MessageResponse(BaseModel):
    """Response model for a processed message."""

    conversation_id: str
    response: str = Field(..., description="The agent's final answer")
    iterations: int = Field(..., description="Number of model calls made")
    tool_results: list[ToolResultModel] = Field(default_factory=list)


class StoredMessage(BaseModel):
    role: str
    content: str
    timestamp: str


class ConversationResponse(BaseModel):
    """Response model for a stored conversation."""

    id: str
    channel_ref: str
    messages: list[StoredMessage]
    created_at: str
    updated_at: str


class ValidateRequest(BaseModel):
    command: str = Field(..., description="Shell command to check")


class ValidateResponse(BaseModel):
    command: str
    allowed: bool
    reason: str


class ToolInfo(BaseModel):
    name: str
    description: str
    parameters: dict[str, Any]


# Endpoints


@router.post("/conversations/{conversation_id}/messages", response_model=MessageResponse)
async def post_message(conversation_id: str, body: MessageRequest, request: Request) -> MessageResponse:
    """
    Send a user message to the agent.

    The agent reads, edits, builds and commits in the repository as needed
    and returns its final answer.
    """
    manager = get_manager(request)
    try:
        result = await manager.process_message(conversation_id, body.channel_ref, body.text)
    except ModelBackendError as e:
        logger.error(f"Message failed for {conversation_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    except IterationLimitExceeded as e:
        logger.error(f"Message failed for {conversation_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return MessageResponse(
        conversation_id=conversation_id,
        response=result.response,
        iterations=result.iterations,
        tool_results=[
            ToolResultModel(invocation_id=r.invocation_id, output=r.output, is_error=r.is_error)
            for r in result.tool_results
        ],
    )


@router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(conversation_id: str, request: Request) -> ConversationResponse:
    """Get a conversation's stored history."""
    try:
        conversation = await get_store(request).get(conversation_id)
    except StoreError as e:
        logger.error(f"Loading {conversation_id} failed: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    if conversation is None:
        raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")
    return ConversationResponse(**conversation.to_dict())


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str, request: Request):
    """Clear a conversation's history."""
    try:
        await get_manager(request).clear_conversation(conversation_id)
    except StoreError as e:
        logger.error(f"Deleting {conversation_id} failed: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    return {"status": "cleared"}


@router.post("/commands/validate", response_model=ValidateResponse)
def validate_command(body: ValidateRequest, request: Request) -> ValidateResponse:
    """Check a shell command against the command policy without running it."""
    verdict = get_validator(request).validate(body.command)
    return ValidateResponse(command=body.command, allowed=verdict.allowed, reason=verdict.reason)


@router.get("/tools", response_model=list[ToolInfo])
def list_tools(request: Request) -> list[ToolInfo]:
    """List the tools the agent can call."""
    return [
        ToolInfo(name=tool.name, description=tool.description, parameters=tool.parameters)
        for tool in get_registry(request).list_tools()
    ]
