"""
Slack Gateway HTTP endpoint handlers.

This module contains FastAPI endpoint handlers for Slack webhooks: the Events
API endpoint and the interactive components endpoint. Every request is
signature-verified before its body is parsed. Accepted deliveries are handed
to the dispatcher and acknowledged with an empty 200 straight away; the
actual work happens off the request path.
"""

from functools import partial
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from minno_server.context import AppContext, get_context
from minno_server.errors import ValidationError
from minno_server.schemas.slack import (
    decode_json_object,
    parse_event_envelope,
    parse_interactive_payload,
    parse_url_verification,
)
from minno_server.utils.logging import get_logger, log_slack_event

logger = get_logger("slack.gateway")

# Create router for Slack endpoints
slack_router = APIRouter()


async def verified_slack_body(request: Request, context: AppContext = Depends(get_context)) -> bytes:
    """
    Dependency returning the raw body of a verified Slack request.

    The body is read once, before any parsing, so the signature covers the
    exact bytes Slack signed.
    """
    body = await request.body()
    context.verifier.verify(
        request.headers.get("X-Slack-Request-Timestamp"),
        request.headers.get("X-Slack-Signature"),
        body,
    )
    return body


@slack_router.post("/events")
async def handle_slack_events(
    body: bytes = Depends(verified_slack_body),
    context: AppContext = Depends(get_context),
) -> Response:
    """
    Handle Events API deliveries.

    This endpoint receives:
    1. URL verification challenges (Event Subscriptions setup)
    2. Event callbacks (messages, mentions, reactions)
    """
    payload = decode_json_object(body)
    request_type = payload.get("type")

    if request_type == "url_verification":
        verification = parse_url_verification(payload)
        logger.info("Received URL verification challenge")
        return JSONResponse(content={"challenge": verification.challenge})

    if request_type == "event_callback":
        envelope = parse_event_envelope(payload)
        event = envelope.event

        log_slack_event(
            "event_received",
            channel_id=getattr(event, "channel", None),
            user_id=getattr(event, "user", None),
            team_id=envelope.team_id,
            event_id=envelope.event_id,
            slack_event_type=event.type,
        )

        context.dispatcher.submit(
            f"event {envelope.event_id} ({event.type})",
            partial(context.processor.handle_envelope, envelope),
        )
        return Response(status_code=200)

    logger.debug("Ignoring unsupported request type", request_type=request_type)
    return Response(status_code=200)


@slack_router.post("/interactive")
async def handle_slack_interactive(
    body: bytes = Depends(verified_slack_body),
    context: AppContext = Depends(get_context),
) -> Response:
    """
    Handle interactive component payloads (buttons, menus, modals).

    Slack posts these form-encoded with the JSON document in a ``payload``
    field.
    """
    try:
        form_data = parse_qs(body.decode("utf-8"))
    except UnicodeDecodeError:
        raise ValidationError("Interactive request body is not valid UTF-8")

    payload = parse_interactive_payload((form_data.get("payload") or [None])[0])

    log_slack_event(
        "interaction_received",
        channel_id=payload.channel.id if payload.channel else None,
        user_id=payload.user.id,
        interaction_type=payload.type,
    )

    context.dispatcher.submit(
        f"interaction {payload.type}",
        partial(context.processor.handle_interaction, payload),
    )
    return Response(status_code=200)
