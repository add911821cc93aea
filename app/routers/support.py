"""
routers/support.py — Customer-Support Assistant & Parts Search Routes

Conversations are private to the user who opened them. Each support query
or parts search is forwarded to the workflow service and both sides of the
exchange are stored as chat messages.

Business Rules:
- A conversation belonging to another user is reported as missing (404)
- The last PREVIOUS_MESSAGES messages are sent as context
- Assistant messages keep sources, suggested actions and the escalation flag

Called by: main.py (router mount)
Depends on: models, services/workflow_client.py, serializers, schemas/support.py
"""

from fastapi import APIRouter, Depends
from loguru import logger
from sqlalchemy.orm import Session

from ..database import get_db, utcnow
from ..dependencies import AuthContext, require_reader
from ..errors import ExternalServiceFailure, NotFound
from ..models import ChatMessage, Conversation
from ..schemas.support import ConversationCreate, PartsSearchRequest, SupportQuery
from ..serializers import chat_message_to_dict, conversation_to_dict
from ..services import workflow_client
from ..services.workflow_client import WorkflowError

router = APIRouter(tags=["support"])

PREVIOUS_MESSAGES = 10


def _owned_conversation(db: Session, ctx: AuthContext, conversation_id: int) -> Conversation:
    conv = (
        db.query(Conversation)
        .filter(
            Conversation.id == conversation_id,
            Conversation.user_id == ctx.user_id,
            Conversation.organization_id == ctx.organization_id,
        )
        .first()
    )
    if conv is None:
        raise NotFound("Conversation not found")
    return conv


def _start_conversation(db: Session, ctx: AuthContext, title: str | None, context: str) -> Conversation:
    conv = Conversation(
        organization_id=ctx.organization_id,
        user_id=ctx.user_id,
        title=title,
        context=context,
    )
    db.add(conv)
    db.flush()
    return conv


@router.post("/api/conversations", status_code=201)
async def create_conversation(
    body: ConversationCreate,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    conv = _start_conversation(db, ctx, body.title, body.context)
    db.commit()
    return {"data": conversation_to_dict(conv)}


@router.get("/api/conversations/{conversation_id}/messages")
async def list_conversation_messages(
    conversation_id: int,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    conv = _owned_conversation(db, ctx, conversation_id)
    return {"data": [chat_message_to_dict(m) for m in conv.messages]}


@router.post("/api/support/query")
async def support_query(
    body: SupportQuery,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    if body.conversation_id:
        conv = _owned_conversation(db, ctx, body.conversation_id)
    else:
        conv = _start_conversation(db, ctx, body.query[:80], "CUSTOMER_SUPPORT")

    history = conv.messages[-PREVIOUS_MESSAGES:]
    payload = {
        "query": body.query,
        "conversationId": conv.id,
        "previousMessages": [
            {
                "role": m.role.lower(),
                "content": m.content,
                "timestamp": m.created_at.isoformat() if m.created_at else None,
            }
            for m in history
        ],
        "userContext": {
            "userId": ctx.user_id,
            "role": ctx.role,
            "organizationId": ctx.organization_id,
        },
        "dataAccess": {
            "includeOrders": True,
            "includeQuotes": True,
            "includeSupplierCommunications": True,
        },
        "context": body.context,
    }
    try:
        result = await workflow_client.process_customer_support_query(payload)
    except WorkflowError as e:
        logger.error(f"Support query for conversation {conv.id} failed: {e}")
        db.rollback()
        raise ExternalServiceFailure("Failed to process support query")
    if not isinstance(result, dict):
        result = {}

    answer = result.get("response") or result.get("textOutput") or ""
    conv.messages.append(ChatMessage(role="USER", content=body.query))
    reply = ChatMessage(
        role="ASSISTANT",
        content=answer,
        context={
            "sources": result.get("sources") or [],
            "suggestedActions": result.get("suggestedActions") or [],
            "needsHumanEscalation": bool(result.get("needsHumanEscalation")),
            "escalationReason": result.get("escalationReason"),
        },
    )
    conv.messages.append(reply)
    conv.updated_at = utcnow()
    db.commit()
    return {
        "data": {
            "conversationId": conv.id,
            "message": chat_message_to_dict(reply),
            "response": answer,
            "sources": reply.context["sources"],
            "suggestedActions": reply.context["suggestedActions"],
            "needsHumanEscalation": reply.context["needsHumanEscalation"],
            "escalationReason": reply.context["escalationReason"],
        }
    }


@router.post("/api/parts/search")
async def parts_search(
    body: PartsSearchRequest,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    conv = _owned_conversation(db, ctx, body.conversation_id) if body.conversation_id else None
    payload = body.model_dump(by_alias=True, exclude_none=True)
    payload["organizationId"] = ctx.organization_id
    try:
        result = await workflow_client.search_parts(payload)
    except WorkflowError as e:
        logger.error(f"Parts search {body.query!r} failed: {e}")
        raise ExternalServiceFailure("Failed to process parts search request")
    if not isinstance(result, dict):
        result = {"results": result or []}

    if conv is not None:
        found = len(result.get("results") or [])
        conv.messages.append(ChatMessage(role="USER", content=body.query))
        conv.messages.append(
            ChatMessage(
                role="ASSISTANT",
                content=f'I found {found} parts matching your search for "{body.query}".',
                context={"searchResults": result},
            )
        )
        conv.updated_at = utcnow()
        db.commit()
    return {"data": result}
