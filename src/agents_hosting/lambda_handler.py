"""AWS Lambda handler for the agents hosting server.

This module wraps the Starlette app with Mangum for AWS Lambda deployment.
"""

from __future__ import annotations

import os
from typing import Any

from mangum import Mangum

from .server import create_app_from_env, echo, load_logic

_mangum_handler: Mangum | None = None


def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    global _mangum_handler
    if _mangum_handler is None:
        logic_path = os.getenv("AGENTS_LOGIC")
        app = create_app_from_env(load_logic(logic_path) if logic_path else echo)
        _mangum_handler = Mangum(app, lifespan="off")

    return _mangum_handler(event, context)
