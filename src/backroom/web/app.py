from __future__ import annotations

import hmac
from typing import Any, Dict, List, Optional

from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from ..channels.whatsapp import WhatsAppError, extract_message_data
from ..config import Settings, load_settings
from ..domain.models import Transaction, TransactionAction
from ..domain.normalize import canonical_name, coerce_quantity, truncate
from ..ledger.base import ItemExists, StorageError
from ..logging import get_logger
from ..pipeline.formatter import APOLOGY
from ..services import Services, build_services


LOG = get_logger("web")

DASHBOARD_USER = "dashboard"


def _parse_int(value: Optional[str], *, default: int, minimum: int, maximum: int) -> int:
    try:
        parsed = int(value) if value is not None else default
    except (TypeError, ValueError):
        parsed = default
    if parsed < minimum:
        return minimum
    if parsed > maximum:
        return maximum
    return parsed


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Request body must be JSON") from exc
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return body


def _optional_unit(body: Dict[str, Any]) -> Optional[str]:
    unit = body.get("unit")
    if unit is None:
        return None
    if not isinstance(unit, str) or not unit.strip():
        raise HTTPException(status_code=400, detail="unit must be a non-empty string")
    return unit.strip().lower()


def _quantity(body: Dict[str, Any]) -> float:
    q = coerce_quantity(body.get("quantity"))
    if q is None or q < 0:
        raise HTTPException(status_code=400, detail="quantity must be a non-negative number")
    return q


def create_app(
    settings: Optional[Settings] = None,
    *,
    services: Optional[Services] = None,
    allow_origins: Optional[List[str]] = None,
) -> Starlette:
    """Create the Starlette app: WhatsApp webhook plus the dashboard JSON API."""

    if services is None:
        services = build_services(settings or load_settings())
    settings = services.settings
    ledger = services.ledger
    transactions = services.transactions
    pipeline = services.pipeline

    if not settings.dashboard_api_token:
        LOG.warning("DASHBOARD_API_TOKEN is not set; dashboard API is unauthenticated.")

    def require_token(request: Request) -> None:
        expected = settings.dashboard_api_token
        if not expected:
            return
        header = request.headers.get("authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), expected):
            raise HTTPException(status_code=401, detail="Invalid or missing bearer token")

    # ---------- WhatsApp webhook ----------
    def process_webhook(body: Any) -> None:
        inbound = extract_message_data(body)
        if inbound is None:
            LOG.debug("Non-message webhook event received")
            return
        LOG.info("Incoming WhatsApp message from %s (id=%s, voice=%s)", inbound.sender, inbound.message_id, inbound.is_voice)
        channel = services.whatsapp
        try:
            if inbound.is_voice and inbound.audio_id and channel is not None and pipeline.transcriber is not None:
                try:
                    audio, mime = channel.download_media(inbound.audio_id)
                    inbound.audio = audio
                    inbound.audio_mime_type = mime or inbound.audio_mime_type
                except WhatsAppError as exc:
                    LOG.warning("Voice note %s could not be downloaded: %s", inbound.audio_id, exc)
            reply = pipeline.handle(inbound)
            if channel is None:
                LOG.warning("WhatsApp channel not configured; reply not delivered: %r", truncate(reply.message))
                return
            channel.send_reply(inbound.sender, reply.message, inbound.message_id)
        except Exception:
            LOG.exception("Error processing WhatsApp message %s", inbound.message_id)
            if channel is not None:
                channel.send_message(inbound.sender, APOLOGY)

    async def verify_webhook(request: Request) -> Response:
        qp = request.query_params
        mode = qp.get("hub.mode")
        token = qp.get("hub.verify_token")
        challenge = qp.get("hub.challenge") or ""
        expected = settings.whatsapp_verify_token
        LOG.info("Webhook verification request (mode=%s, token=%s)", mode, "***" if token else "missing")
        if mode == "subscribe" and expected and token is not None and hmac.compare_digest(token, expected):
            LOG.info("Webhook verified successfully")
            return PlainTextResponse(challenge)
        LOG.warning("Webhook verification failed")
        return PlainTextResponse("Forbidden", status_code=403)

    async def receive_webhook(request: Request) -> Response:
        try:
            body = await request.json()
        except ValueError:
            LOG.warning("Webhook body is not JSON; ignoring")
            return PlainTextResponse("OK")
        # Meta retries anything slower than a few seconds; acknowledge first
        return PlainTextResponse("OK", background=BackgroundTask(process_webhook, body))

    async def webhook_status(request: Request) -> Response:
        try:
            body = await request.json()
            statuses = body["entry"][0]["changes"][0]["value"].get("statuses") or []
        except (ValueError, KeyError, IndexError, TypeError, AttributeError):
            statuses = []
        for status in statuses:
            if isinstance(status, dict):
                LOG.debug(
                    "Message status update id=%s status=%s recipient=%s",
                    status.get("id"), status.get("status"), status.get("recipient_id"),
                )
        return PlainTextResponse("OK")

    # ---------- dashboard API ----------
    async def health(_: Request) -> JSONResponse:
        return JSONResponse(
            {
                "status": "ok",
                "backend": settings.backend,
                "whatsapp": services.whatsapp is not None,
                "nlu": services.parser.nlu is not None,
            }
        )

    async def list_inventory(request: Request) -> JSONResponse:
        require_token(request)
        search = request.query_params.get("search")
        items = await run_in_threadpool(ledger.search, search) if search else await run_in_threadpool(ledger.list_all)
        return JSONResponse({"items": [i.as_dict() for i in items], "count": len(items)})

    async def create_item(request: Request) -> JSONResponse:
        require_token(request)
        body = await _json_body(request)
        name = canonical_name(body.get("name"))
        if not name:
            raise HTTPException(status_code=400, detail="name is required")
        quantity = _quantity(body)
        unit = _optional_unit(body)
        try:
            item = await run_in_threadpool(ledger.create, name, quantity, unit, DASHBOARD_USER)
        except ItemExists as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        await run_in_threadpool(
            transactions.append,
            Transaction(
                action=TransactionAction.ADD,
                item_name=item.name,
                quantity=item.quantity,
                unit=item.unit,
                user_id=DASHBOARD_USER,
                notes="Created from dashboard",
            )
        )
        return JSONResponse(item.as_dict(), status_code=201)

    async def update_item(request: Request) -> JSONResponse:
        require_token(request)
        body = await _json_body(request)
        if "quantity" not in body and "unit" not in body:
            raise HTTPException(status_code=400, detail="Provide quantity and/or unit")
        existing = await run_in_threadpool(ledger.get, request.path_params["name"])
        if existing is None:
            raise HTTPException(status_code=404, detail="Item not found")
        unit = _optional_unit(body)
        quantity = _quantity(body) if "quantity" in body else existing.quantity
        item = await run_in_threadpool(ledger.set_quantity, existing.name, quantity, unit, DASHBOARD_USER)
        if "quantity" in body:
            await run_in_threadpool(
                transactions.append,
                Transaction(
                    action=TransactionAction.ADJUST,
                    item_name=item.name,
                    quantity=quantity,
                    unit=item.unit,
                    user_id=DASHBOARD_USER,
                    notes="Dashboard edit",
                )
            )
        return JSONResponse(item.as_dict())

    async def delete_item(request: Request) -> JSONResponse:
        require_token(request)
        name = request.path_params["name"]
        deleted = await run_in_threadpool(ledger.delete, name)
        if not deleted:
            raise HTTPException(status_code=404, detail="Item not found")
        return JSONResponse({"deleted": canonical_name(name)})

    async def list_transactions(request: Request) -> JSONResponse:
        require_token(request)
        qp = request.query_params
        limit = _parse_int(qp.get("limit"), default=50, minimum=1, maximum=500)
        page = _parse_int(qp.get("page"), default=0, minimum=0, maximum=100_000)
        rows = await run_in_threadpool(transactions.history, qp.get("item") or None, limit=limit, offset=limit * page)
        return JSONResponse({"items": [t.as_dict() for t in rows], "page": page, "limit": limit})

    async def post_message(request: Request) -> JSONResponse:
        require_token(request)
        body = await _json_body(request)
        text = body.get("text")
        if not isinstance(text, str):
            raise HTTPException(status_code=400, detail="text must be a string")
        user = body.get("user") if isinstance(body.get("user"), str) and body.get("user") else DASHBOARD_USER
        reply = await run_in_threadpool(pipeline.process_text, text, user)
        return JSONResponse({"reply": reply})

    async def storage_error(_: Request, exc: Exception) -> JSONResponse:
        LOG.error("Storage failure while serving request: %s", exc)
        return JSONResponse({"detail": "Inventory storage is unavailable"}, status_code=503)

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/webhook/whatsapp", verify_webhook, methods=["GET"]),
        Route("/webhook/whatsapp", receive_webhook, methods=["POST"]),
        Route("/webhook/whatsapp/status", webhook_status, methods=["POST"]),
        Route("/api/inventory", list_inventory, methods=["GET"]),
        Route("/api/inventory", create_item, methods=["POST"]),
        Route("/api/inventory/{name:str}", update_item, methods=["PATCH"]),
        Route("/api/inventory/{name:str}", delete_item, methods=["DELETE"]),
        Route("/api/transactions", list_transactions, methods=["GET"]),
        Route("/api/messages", post_message, methods=["POST"]),
    ]

    app = Starlette(debug=False, routes=routes, exception_handlers={StorageError: storage_error})

    origins = allow_origins or ["http://localhost:3000", "http://127.0.0.1:3000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in origins else origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.services = services
    return app


__all__ = ["create_app"]
