"""Main application entry point."""
import argparse
from asyncio import get_running_loop
from functools import partial
from ipaddress import IPv4Network, IPv6Network
from pathlib import Path
from typing import Optional, Sequence

import uvicorn
from blacksheep import Application, Content, HTTPException, Request, Response
from blacksheep.plugins import json
from blacksheep.server.remotes.forwarding import XForwardedHeadersMiddleware
from loguru import logger
from naks.checkout.auth import TokenAuthHandler, require_admin
from naks.checkout.config import CommandLineConfig, load_config, load_event_config
from naks.checkout.database import DBConfig, db_session_factory, db_session_middleware
from naks.checkout.docs import docs
from naks.checkout.http_client import setup_http_client, shutdown_http_client
from naks.checkout.log import setup_logging
from naks.checkout.models.config import Config
from naks.checkout.payment.config import load_gateways
from naks.checkout.serialization import get_converter
from naks.checkout.serialization.json import json_dumps, json_loads
from naks.checkout.services.checkout import CheckoutService
from naks.checkout.services.coupon import CouponService
from naks.checkout.services.notification import PaymentNotificationService
from naks.checkout.services.payment import PaymentService
from naks.checkout.services.ticket import TicketService
from naks.checkout.views.responses import BodyValidationError, ExceptionDetails
from naks.checkout.watcher import DatabasePaymentRecordStore
from rodi import GetServiceContext
from sqlalchemy.ext.asyncio import AsyncSession

TRUSTED_PROXY_NETWORKS = (
    IPv4Network("127.0.0.0/8"),
    IPv4Network("10.0.0.0/8"),
    IPv4Network("172.16.0.0/12"),
    IPv4Network("192.168.0.0/16"),
    IPv6Network("fc00::/7"),
    IPv6Network("::1/128"),
)
"""Networks whose X-Forwarded headers are trusted."""

app = Application()
docs.bind_app(app)

json.use(loads=json_loads, dumps=lambda o: json_dumps(o).decode())

for service_type in (CouponService, TicketService, PaymentService, CheckoutService):
    app.services.add_scoped(service_type)


def _json_error(status: int, details: ExceptionDetails) -> Response:
    data = get_converter().dumps(details)
    return Response(status, content=Content(b"application/json", data))


async def _handle_validation_error(
    app: Application, request: Request, exc: BodyValidationError
) -> Response:
    return _json_error(422, ExceptionDetails.create(exc.exc))


async def _handle_http_error(
    app: Application, request: Request, exc: HTTPException
) -> Response:
    # a single string argument is shown to the client
    detail = exc.args[0] if len(exc.args) == 1 else None
    return _json_error(
        exc.status, ExceptionDetails(detail=detail if isinstance(detail, str) else None)
    )


app.exceptions_handlers[BodyValidationError] = _handle_validation_error
for status in (409, 422):
    app.exceptions_handlers[status] = _handle_http_error

app.middlewares.append(db_session_middleware)


async def _use_root_path(request: Request, handler):
    request.base_path = request.scope.get("root_path", "")
    return await handler(request)


@app.on_middlewares_configuration
def _add_proxy_middlewares(app: Application):
    # these run before authentication
    forwarded = XForwardedHeadersMiddleware(
        known_networks=list(TRUSTED_PROXY_NETWORKS)
    )
    app.middlewares[:0] = [forwarded, _use_root_path]


def _create_notifications(
    services: GetServiceContext,
) -> PaymentNotificationService:
    store = services.provider[DatabasePaymentRecordStore]
    service = PaymentNotificationService(store, get_running_loop())
    service.add_listeners(services.provider[DBConfig].session_factory)
    return service


def _create_record_store(services: GetServiceContext) -> DatabasePaymentRecordStore:
    poll_interval = services.provider[Config].payment.poll_interval
    session_factory = services.provider[DBConfig].session_factory
    return DatabasePaymentRecordStore(session_factory, poll_interval)


async def _start(config: Config, insecure: bool, app: Application):
    """Connect to the database and load the payment gateways."""
    db_config = DBConfig.create(config.database)
    await db_config.create_tables()

    http_client = setup_http_client(config.payment.request_timeout)
    gateways = load_gateways(config.payment, http_client, insecure)
    if gateways.get_gateway(config.payment.gateway) is None:
        logger.error(f"Payment gateway {config.payment.gateway!r} is not available")

    app.services.add_instance(db_config)
    app.services.add_scoped_by_factory(db_session_factory, AsyncSession)
    app.services.add_singleton_by_factory(_create_record_store)
    app.services.add_singleton_by_factory(_create_notifications)
    app.services.add_instance(http_client)
    app.services.add_instance(gateways)


@app.on_stop
async def _stop(app: Application):
    provider = app.service_provider
    db_config: DBConfig = provider[DBConfig]

    await provider[DatabasePaymentRecordStore].close()
    provider[PaymentNotificationService].remove_listeners(db_config.session_factory)
    await shutdown_http_client()
    await db_config.close()


def app_factory() -> Application:
    """Build the ASGI app for uvicorn.

    Worker processes do not share state with the main process, so each one
    reads the command line arguments again.
    """
    cmd_config = parse_args()
    setup_logging(debug=cmd_config.debug)

    config = load_config(cmd_config.config)
    event_config = load_event_config(cmd_config.events)

    app.services.add_instance(cmd_config)
    app.services.add_instance(config)
    app.services.add_instance(event_config)
    app.on_start(partial(_start, config, cmd_config.insecure))

    # guests have no token, so authentication never rejects a request
    app.use_authentication().add(TokenAuthHandler(config))
    app.use_authorization().add(require_admin)

    app.use_cors(
        allow_methods=("GET", "POST", "PUT", "DELETE"),
        allow_origins=config.auth.allowed_origins,
        allow_headers=("Authorization", "Content-Type"),
    )

    if cmd_config.insecure:
        logger.warning("Starting with insecure options")

    return app


def run():
    """Entry point for the console script."""
    args = parse_args()

    uvicorn.run(
        "naks.checkout.app:app_factory",
        factory=True,
        host=args.bind,
        port=args.port,
        root_path=args.root_path,
        reload=args.reload,
        workers=args.workers,
        proxy_headers=False,
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> CommandLineConfig:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Naks Yetu checkout HTTP API server",
    )

    server = parser.add_argument_group("server")
    server.add_argument(
        "-p", "--port", type=int, help="the port to listen on", default=8000
    )
    server.add_argument(
        "-b", "--bind", type=str, help="the address to bind to", default="127.0.0.1"
    )
    server.add_argument("--root-path", type=str, help="the URL root path", default="")
    server.add_argument(
        "-w", "--workers", type=int, help="the number of worker processes", default=1
    )

    dev = parser.add_argument_group("development")
    dev.add_argument(
        "-d", "--debug", action="store_true", help="enable debug settings and logging"
    )
    dev.add_argument(
        "--reload",
        action="store_true",
        help="watch file changes and reload the server (implies one worker)",
    )
    dev.add_argument(
        "--insecure",
        action="store_true",
        help="enable insecure settings, such as the mock payment gateway",
    )

    files = parser.add_argument_group("configuration")
    files.add_argument(
        "-c",
        "--config",
        type=Path,
        help="path to the config file",
        default=Path("config.yml"),
    )
    files.add_argument(
        "--events",
        type=Path,
        help="path to the events config file",
        default=Path("events.yml"),
    )

    args = parser.parse_args(argv)
    if args.workers < 1:
        parser.error("--workers must be at least 1")

    return CommandLineConfig(
        port=args.port,
        bind=args.bind,
        root_path=args.root_path,
        workers=1 if args.reload else args.workers,
        debug=args.debug,
        reload=args.reload,
        insecure=args.insecure,
        config=args.config,
        events=args.events,
    )


# Import views

import naks.checkout.views.checkout  # noqa
import naks.checkout.views.coupon  # noqa
import naks.checkout.views.event  # noqa
import naks.checkout.views.payment  # noqa
