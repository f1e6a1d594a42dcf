"""HTTP request node handler."""

import time
from typing import Any, Dict, Optional

import httpx

from core.logging import get_logger
from models.nodes import HttpRequestNodeConfig
from services.execution.models import NodeContext, NodeResult
from services.execution.templates import render_template, render_value

logger = get_logger(__name__)

BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


async def handle_http_request(
    node_id: str,
    node_type: str,
    config: HttpRequestNodeConfig,
    context: NodeContext,
    default_timeout: float = 30.0,
) -> NodeResult:
    """Call an external endpoint and expose the response to later nodes.

    Request failures never fail the run: transport errors surface as
    ``httpError`` with ``httpStatus`` 0, and non-2xx responses are recorded
    like any other response.

    Variables set:
        httpResponse: parsed JSON body, or the raw text
        httpStatus: response status code (0 on transport error)
        httpError: error description, only on transport error
    """
    start_time = time.time()
    method = (config.method or "GET").upper()
    url = render_template(config.url, context.variables, context.contact)
    timeout: Optional[float] = config.timeout or default_timeout

    headers: Dict[str, str] = {"Content-Type": "application/json"}
    headers.update(render_value(config.headers, context.variables, context.contact))
    headers["Idempotency-Key"] = context.step_key(node_id)

    request_kwargs: Dict[str, Any] = {"method": method, "url": url, "headers": headers}
    if config.body is not None and method in BODY_METHODS:
        request_kwargs["json"] = render_value(config.body, context.variables, context.contact)

    logger.info("[HTTP Request] Executing", node_id=node_id, method=method, url=url)

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.request(**request_kwargs)

        try:
            response_data = response.json()
        except ValueError:
            response_data = response.text

        logger.info("[HTTP Request] Completed",
                   node_id=node_id,
                   status=response.status_code,
                   execution_time=round(time.time() - start_time, 3))

        return NodeResult(variables={
            "httpResponse": response_data,
            "httpStatus": response.status_code,
        })

    except Exception as e:
        if isinstance(e, httpx.TimeoutException):
            error = f"Request timed out after {timeout} seconds"
        else:
            error = str(e) or type(e).__name__
        logger.error("HTTP request failed", node_id=node_id, url=url, error=error)

        return NodeResult(variables={
            "httpError": error,
            "httpStatus": 0,
        })
