"""Agents hosting server - HTTP entry point."""

import argparse
import importlib
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from .adapter import CloudAdapter, TurnLogic
from .config import load_auth_configuration
from .http_auth import authorize
from .turn_context import TurnContext
from .types import ActivityTypes

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


async def echo(context: TurnContext) -> None:
    """Reply to each message with its own text."""
    if context.activity.type == ActivityTypes.MESSAGE:
        await context.send_activity(f"Echo: {context.activity.text}")


def load_logic(path: str) -> TurnLogic:
    """Import turn logic given as ``module:function``."""
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Turn logic must be given as module:function, got {path!r}")
    return getattr(importlib.import_module(module_name), attribute)


def create_app(adapter: CloudAdapter, logic: TurnLogic) -> Starlette:
    """Create the Starlette application serving ``logic`` through ``adapter``.

    Args:
        adapter: Adapter that authenticates and runs inbound activities
        logic: Turn handler invoked for every activity

    Returns:
        Configured Starlette application
    """

    async def messages(request: Request) -> Response:
        content_type = request.headers.get("content-type", "")
        if "application/json" not in content_type.lower():
            return Response(status_code=415)

        identity = await authorize(request, adapter.verifier)
        if isinstance(identity, Response):
            return identity

        try:
            body = await request.json()
        except ValueError:
            logger.warning("BadRequest: Request body is not valid JSON")
            return Response(status_code=400)
        if not isinstance(body, dict):
            return Response(status_code=400)

        result = await adapter.process(
            body, request.headers.get("authorization"), logic, identity=identity
        )
        if result.body is None:
            return Response(status_code=result.status)
        return JSONResponse(result.body, status_code=result.status)

    async def health(request: Request) -> Response:
        return JSONResponse({"status": "ok"})

    @asynccontextmanager
    async def lifespan(app: Starlette):
        yield
        await adapter.close()

    return Starlette(
        routes=[
            Route("/api/messages", messages, methods=["POST"]),
            Route("/health", health, methods=["GET"]),
        ],
        lifespan=lifespan,
    )


def create_app_from_env(logic: TurnLogic = echo) -> Starlette:
    """Build the adapter from environment configuration and wrap it in an app."""
    adapter = CloudAdapter.from_configuration(load_auth_configuration())
    return create_app(adapter, logic)


def main():
    """Main entry point for the agents hosting server."""
    parser = argparse.ArgumentParser(description="Agents Hosting Server")
    parser.add_argument(
        "--logic",
        type=str,
        default=None,
        help="Turn logic as module:function (default: built-in echo)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    import uvicorn

    logic = load_logic(args.logic) if args.logic else echo
    app = create_app_from_env(logic)

    host = os.getenv("AGENTS_HOST", "127.0.0.1")
    port = int(os.getenv("AGENTS_PORT", "3978"))
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
