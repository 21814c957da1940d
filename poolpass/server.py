from __future__ import annotations
import logging
import os
from typing import Optional

import httpx
import redis.asyncio as redis
from fastapi import Depends, FastAPI, Request
from fastapi.responses import FileResponse, ORJSONResponse, Response

from .artifacts import ArtifactStore
from .config import Settings
from .errors import (
    NotFoundError, PoolPassError, UpstreamError, ValidationError,
)
from .gateway import Flutterwave, MockPay, PaymentGateway
from .helpers import mask_key
from .infra.logs import configure_logging
from .infra.sql import make_async_engine
from .intake import initialize_payment
from .model.ticket import SUCCESSFUL
from .model.ticketstore import TicketStore, new_store, create_schema
from .notify import Notifier, new_notifier
from .reconcile import ReconciliationEngine

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, *,
               store: Optional[TicketStore] = None,
               gateway: Optional[PaymentGateway] = None,
               notifier: Optional[Notifier] = None) -> FastAPI:
    """Composition root. Missing collaborators are built from ``settings``
    at startup and torn down at shutdown; injected ones are used as-is."""
    if settings is None:
        # raises ConfigError: refuse to start without secrets
        settings = Settings.from_env()

    app = FastAPI(
        title="PoolPass",
        default_response_class=ORJSONResponse,
    )
    app.state.settings = settings

    # ---
    # startup / shutdown
    # ---
    @app.on_event("startup")
    async def _say_hello():
        configure_logging(settings.log_level)
        logger.info("PoolPass is starting up...")
        logger.info(
            f"   - FLUTTERWAVE_WEBHOOK_SECRET: "
            f"{mask_key(settings.webhook_secret)}"
        )
        logger.info(
            f"   - FLUTTERWAVE_PUBLIC_KEY: "
            f"{mask_key(settings.gateway_public_key)}"
        )
        logger.info(
            f"   - FLUTTERWAVE_SECRET_KEY: "
            f"{mask_key(settings.gateway_secret_key)}"
        )
        logger.info(f"   - Ticket store backend: {settings.store_backend}")
        logger.info(f"   - Email delivery: {settings.email_delivery}")

    @app.on_event("startup")
    async def _http_client_start():
        app.state.http = httpx.AsyncClient(
            limits=httpx.Limits(
                max_connections=64, max_keepalive_connections=16
            ),
        )

    @app.on_event("startup")
    async def _store_start():
        app.state.sql_engine = None
        app.state.redis = None
        if store is not None:
            app.state.store = store
        elif settings.store_backend == "sql":
            engine, SessionAsync, gated = make_async_engine(
                settings.database_url
            )
            async with engine.begin() as conn:
                await create_schema(conn)
            app.state.sql_engine = engine
            app.state.store = new_store(
                "sql", sessionmaker=SessionAsync, gated=gated
            )
        elif settings.store_backend == "redis":
            app.state.redis = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                max_connections=int(os.getenv("REDIS_MAX_CONN", "64")),
                socket_timeout=2.0,
                socket_connect_timeout=2.0,
                retry_on_timeout=True,
            )
            app.state.store = new_store("redis", r=app.state.redis)
        else:
            app.state.store = new_store(
                settings.store_backend, path=settings.tickets_file
            )

    @app.on_event("startup")
    async def _engine_start():
        if gateway is not None:
            app.state.gateway = gateway
        elif settings.gateway_backend == "mock":
            app.state.gateway = MockPay(settings.public_base_url or "")
        else:
            app.state.gateway = Flutterwave(
                secret_key=settings.gateway_secret_key,
                client=app.state.http,
                base_url=settings.gateway_base_url,
            )
        app.state.artifacts = ArtifactStore(
            settings.artifacts_dir, settings.event,
            contact_email=settings.admin_email,
        )
        app.state.notifier = notifier or new_notifier(settings)
        app.state.engine = ReconciliationEngine(
            store=app.state.store,
            gateway=app.state.gateway,
            artifacts=app.state.artifacts,
            notifier=app.state.notifier,
            webhook_secret=settings.webhook_secret,
            currency=settings.currency,
        )

    @app.on_event("shutdown")
    async def _http_client_stop():
        http = getattr(app.state, "http", None)
        if http is not None:
            await http.aclose()
            app.state.http = None

    @app.on_event("shutdown")
    async def _store_stop():
        s = getattr(app.state, "store", None)
        if s is not None:
            await s.close()
        r = getattr(app.state, "redis", None)
        if r is not None:
            await r.aclose()
            app.state.redis = None
        engine = getattr(app.state, "sql_engine", None)
        if engine is not None:
            await engine.dispose()
            app.state.sql_engine = None

    # ----------------------------
    # Errors
    # ----------------------------
    @app.exception_handler(PoolPassError)
    async def _poolpass_error(request: Request, exc: PoolPassError):
        return ORJSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}")
        return ORJSONResponse(
            {"message": "Internal Server Error"}, status_code=500
        )

    _register_routes(app)
    return app


# ----------------------------
# Dependencies
# ----------------------------
def get_engine(request: Request) -> ReconciliationEngine:
    return request.app.state.engine


def get_store(request: Request) -> TicketStore:
    return request.app.state.store


def get_artifacts(request: Request) -> ArtifactStore:
    return request.app.state.artifacts


async def _ticket_or_404(store: TicketStore, ticket_id: str):
    ticket = await store.get_by_ticket_id(ticket_id)
    if ticket is None:
        raise NotFoundError()
    return ticket


def _register_routes(app: FastAPI) -> None:

    @app.post("/payment/initialize")
    async def payment_initialize(
        request: Request,
        store: TicketStore = Depends(get_store),
    ):
        try:
            payload = await request.json()
        except ValueError:
            raise ValidationError("Invalid JSON")

        settings: Settings = request.app.state.settings
        base = (settings.public_base_url
                or str(request.base_url)).rstrip("/")
        try:
            return await initialize_payment(
                payload=payload,
                store=store,
                gateway=request.app.state.gateway,
                settings=settings,
                redirect_url=f"{base}/success",
                logo_url=f"{base}/logo.png",
            )
        except UpstreamError as e:
            logger.error(f"Payment initialization error: {e.message}")
            raise UpstreamError("Failed to initialize payment")

    # ----------------------------
    # Webhook endpoint (provider push)
    # ----------------------------
    @app.post("/webhooks/payment")
    async def payments_webhook(
        request: Request,
        engine: ReconciliationEngine = Depends(get_engine),
    ):
        payload = await request.body()
        outcome = await engine.handle_webhook(payload, request.headers)
        return outcome.to_dict()

    # ----------------------------
    # Tickets
    # ----------------------------
    @app.get("/tickets")
    async def list_tickets(store: TicketStore = Depends(get_store)):
        return [t.to_dict() for t in await store.list_all()]

    # must be registered before /tickets/{ticket_id}
    @app.get("/tickets/{ticket_id}.pdf")
    async def ticket_pdf(
        ticket_id: str,
        store: TicketStore = Depends(get_store),
        artifacts: ArtifactStore = Depends(get_artifacts),
    ):
        ticket = await _ticket_or_404(store, ticket_id)
        if ticket.payment_status != SUCCESSFUL:
            raise NotFoundError("Ticket not paid")

        filename = f"{ticket.ticket_id}.pdf"
        if artifacts.exists(ticket.ticket_id):
            return FileResponse(
                artifacts.path_for(ticket.ticket_id),
                media_type="application/pdf",
                filename=filename,
            )
        data = await artifacts.generate(ticket)
        return Response(
            content=data,
            media_type="application/pdf",
            headers={
                "Content-Disposition": f'attachment; filename="{filename}"'
            },
        )

    @app.get("/tickets/{ticket_id}/verify")
    async def verify_ticket(
        ticket_id: str,
        transaction_id: Optional[str] = None,
        transactionId: Optional[str] = None,
        engine: ReconciliationEngine = Depends(get_engine),
    ):
        ticket = await engine.verify_now(
            ticket_id, transaction_id or transactionId
        )
        return ticket.to_dict()

    @app.get("/tickets/{ticket_id}")
    async def get_ticket(
        ticket_id: str, store: TicketStore = Depends(get_store)
    ):
        return (await _ticket_or_404(store, ticket_id)).to_dict()

    @app.post("/tickets/{ticket_id}/resend-email")
    async def resend_email(
        ticket_id: str,
        request: Request,
        store: TicketStore = Depends(get_store),
        artifacts: ArtifactStore = Depends(get_artifacts),
    ):
        ticket = await _ticket_or_404(store, ticket_id)
        if ticket.payment_status != SUCCESSFUL:
            logger.info(
                f"Refusing to resend email for ticket {ticket_id} with "
                f"status {ticket.payment_status}"
            )
            raise ValidationError("Cannot resend email for unpaid ticket")

        logger.info(f"Regenerating PDF for ticket {ticket_id} for resend")
        pdf = await artifacts.generate(ticket)
        sent = await request.app.state.notifier.send_ticket(ticket, pdf)
        return {
            "status": "ok",
            "message": "PDF regenerated and emailed" if sent
            else "PDF regenerated",
            "downloadUrl": f"/tickets/{ticket.ticket_id}.pdf",
        }


def main() -> None:
    import uvicorn

    port = int(os.getenv("PORT", "5000"))
    uvicorn.run(
        "poolpass.server:create_app", factory=True,
        host=os.getenv("HOST", "0.0.0.0"), port=port,
    )
