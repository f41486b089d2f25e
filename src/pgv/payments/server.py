"""aiohttp application exposing the billing endpoints."""

import asyncio
import functools
import json
import logging
from typing import Awaitable, Callable, Optional

import asyncpg
import stripe
from aiohttp import web
from pydantic import ValidationError

from pgv.payments.checkout import create_checkout_session
from pgv.payments.deps import BillingDeps
from pgv.payments.errors import BillingError
from pgv.payments.portal import cancel_subscription, create_portal_session
from pgv.payments.schemas import CancelRequest, CheckoutRequest, PortalRequest
from pgv.payments.webhooks import handle_webhook

logger = logging.getLogger(__name__)

DEPS_KEY = web.AppKey("deps", BillingDeps)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type, Stripe-Signature",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@web.middleware
async def cors_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Answer preflights, turn routing errors into JSON, add CORS headers."""
    if request.method == "OPTIONS":
        return web.Response(status=204, headers=CORS_HEADERS)

    try:
        response = await handler(request)
    except web.HTTPMethodNotAllowed:
        response = web.json_response({"error": "Method Not Allowed"}, status=405)
    except web.HTTPNotFound:
        response = web.json_response({"error": "Not Found"}, status=404)

    response.headers.update(CORS_HEADERS)
    return response


def json_endpoint(func: Handler) -> Handler:
    """Convert every failure inside a billing endpoint into a JSON error.

    Validation problems and unparseable JSON bodies are the caller's fault
    (400). Any other ValueError is a server fault and lands in the 500
    branch. Stripe errors pass the upstream message through; database errors
    stay in the logs.
    """

    @functools.wraps(func)
    async def wrapper(request: web.Request) -> web.StreamResponse:
        try:
            return await func(request)
        except ValidationError as e:
            fields = [".".join(str(part) for part in err["loc"]) for err in e.errors()]
            logger.info(f"{request.path}: invalid request fields {fields}")
            return web.json_response(
                {"error": "Missing required parameters", "fields": fields},
                status=400,
            )
        except json.JSONDecodeError:
            return web.json_response({"error": "Invalid JSON body"}, status=400)
        except stripe.StripeError as e:
            logger.error(f"{request.path}: Stripe error: {e}")
            return web.json_response(
                {"error": e.user_message or str(e)},
                status=500,
            )
        except BillingError as e:
            logger.error(f"{request.path}: {e}")
            return web.json_response({"error": e.message}, status=e.status)
        except asyncpg.PostgresError as e:
            logger.error(f"{request.path}: database error: {e}")
            return web.json_response({"error": "Database error"}, status=500)
        except Exception as e:
            logger.exception(f"{request.path}: unexpected error: {e}")
            return web.json_response({"error": "Internal error"}, status=500)

    return wrapper


@json_endpoint
async def checkout_endpoint(request: web.Request) -> web.Response:
    """Handle POST /create-checkout-session."""
    body = CheckoutRequest.model_validate(await request.json())
    url = await create_checkout_session(request.app[DEPS_KEY], body)
    return web.json_response({"url": url})


@json_endpoint
async def portal_endpoint(request: web.Request) -> web.Response:
    """Handle POST /create-portal-session."""
    body = PortalRequest.model_validate(await request.json())
    url = await create_portal_session(request.app[DEPS_KEY], body)
    return web.json_response({"url": url})


@json_endpoint
async def cancel_endpoint(request: web.Request) -> web.Response:
    """Handle POST /cancel-subscription."""
    body = CancelRequest.model_validate(await request.json())
    subscription = await cancel_subscription(request.app[DEPS_KEY], body)
    return web.json_response({"subscription": subscription})


@json_endpoint
async def subscription_endpoint(request: web.Request) -> web.Response:
    """Handle GET /subscription/{user_id}."""
    record = await request.app[DEPS_KEY].store.get_subscription(request.match_info["user_id"])
    return web.json_response({"subscription": record.to_dict() if record else None})


async def webhook_endpoint(request: web.Request) -> web.Response:
    """Handle POST /webhook.

    The raw body is passed through untouched; the signature covers the
    exact bytes Stripe sent.
    """
    payload = await request.read()
    sig_header = request.headers.get("Stripe-Signature")
    return await handle_webhook(request.app[DEPS_KEY], payload, sig_header)


async def health_endpoint(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def create_app(deps: BillingDeps) -> web.Application:
    """Create the aiohttp application with all billing routes.

    Args:
        deps: Billing dependencies shared by every handler

    Returns:
        Configured aiohttp Application
    """
    app = web.Application(middlewares=[cors_middleware])
    app[DEPS_KEY] = deps

    app.router.add_post("/create-checkout-session", checkout_endpoint)
    app.router.add_post("/create-portal-session", portal_endpoint)
    app.router.add_post("/cancel-subscription", cancel_endpoint)
    app.router.add_post("/webhook", webhook_endpoint)
    app.router.add_get("/subscription/{user_id}", subscription_endpoint)
    app.router.add_get("/health", health_endpoint)

    return app


async def run_server(
    deps: BillingDeps,
    shutdown_event: Optional[asyncio.Event] = None,
) -> None:
    """Serve the billing API until the shutdown event is set.

    Args:
        deps: Billing dependencies
        shutdown_event: Optional event to signal shutdown; runs forever without one
    """
    config = deps.config
    app = await create_app(deps)

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, config.webhook_server_host, config.webhook_server_port)
    await site.start()

    logger.info(
        f"Billing server listening on {config.webhook_server_host}:{config.webhook_server_port}"
    )

    try:
        await (shutdown_event or asyncio.Event()).wait()
    finally:
        logger.info("Shutting down billing server...")
        await runner.cleanup()
