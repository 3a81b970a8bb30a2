# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Webhook / HTTP node

Issues one outbound request per httpConfig (webhookConfig is accepted as
a legacy alias). 2xx completes the step, anything else fails it. Retry is
off unless httpConfig.retry.enabled is set.
"""

import asyncio
import base64
import time
from typing import Any, Dict, Optional

import httpx

from credflow.core.logging import get_engine_logger
from credflow.integrations.http import create_http_client, is_url_safe
from ..conditions import evaluate_condition
from ..exceptions import ConditionEvaluationError
from .base import NodeHandler, NodeOutcome, register_handler

logger = get_engine_logger("webhook")

BODY_METHODS = ("POST", "PUT", "PATCH")


def backoff_delay_ms(attempt: int, strategy: str, initial_delay_ms: int) -> int:
    """Exponential: initial, 2x, 4x...; fixed: initial every time"""
    if strategy == "exponential":
        return initial_delay_ms * (2 ** (attempt - 1))
    return initial_delay_ms


@register_handler("webhook", "http")
class WebhookHandler(NodeHandler):
    """
    httpConfig:
        url, method (default GET), headers, body (string or object)
        authentication: {type: bearer|basic|apiKey|none, ...}
        timeout: milliseconds (default 30000)
        responseType: json (default) or text
        validateStatus: optional condition on `status`
        retry: {enabled, maxAttempts, statusCodes, backoffStrategy, initialDelayMs}
    """

    async def execute(self, node, context, step):
        http_config = node.config("httpConfig", "webhookConfig")
        if not http_config.get("url"):
            return NodeOutcome.failed("Webhook URL not configured", {"httpSuccess": False})

        url = str(context.resolve(http_config["url"]))
        if not is_url_safe(url, self.services.config.webhook_allow_private_network):
            return NodeOutcome.failed(f"URL blocked by outbound request policy: {url}", {"httpSuccess": False})

        method = str(http_config.get("method", "GET")).upper()
        timeout = float(http_config.get("timeout", self.services.config.http_timeout * 1000)) / 1000
        headers = self._build_headers(http_config, context)
        content, json_body = self._build_body(http_config, method, context)

        retry = http_config.get("retry") or {}
        max_attempts = int(retry.get("maxAttempts", 3)) if retry.get("enabled") else 1
        retry_statuses = set(retry.get("statusCodes") or [])
        strategy = retry.get("backoffStrategy", "exponential")
        initial_delay_ms = int(retry.get("initialDelayMs", 1000))

        started = time.monotonic()
        response: Optional[httpx.Response] = None
        last_error: Optional[str] = None

        async with create_http_client(timeout, self.services.http_transport) as client:
            for attempt in range(1, max_attempts + 1):
                try:
                    response = await client.request(method, url, headers=headers, content=content, json=json_body)
                    last_error = None
                except httpx.HTTPError as e:
                    response = None
                    last_error = f"{type(e).__name__}: {e}"

                retryable = response is None or response.status_code in retry_statuses
                if not retryable or attempt == max_attempts:
                    break

                delay = backoff_delay_ms(attempt, strategy, initial_delay_ms)
                logger.info(f"Retry {attempt}/{max_attempts} for node {node.id} in {delay}ms")
                await asyncio.sleep(delay / 1000)

        duration_ms = int((time.monotonic() - started) * 1000)

        if response is None:
            return NodeOutcome.failed(
                f"HTTP request to {url} failed: {last_error}",
                {"httpSuccess": False, "httpDurationMs": duration_ms}
            )

        body = self._parse_response(response, http_config.get("responseType", "json"))
        output = {
            "httpStatus": response.status_code,
            "httpBody": body,
            "httpSuccess": self._status_ok(response.status_code, http_config.get("validateStatus")),
            "httpDurationMs": duration_ms,
        }

        if not output["httpSuccess"]:
            return NodeOutcome.failed(f"HTTP {response.status_code} from {method} {url}", output)

        return NodeOutcome.completed(output)

    def _build_headers(self, http_config: Dict[str, Any], context) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers.update(http_config.get("headers") or {})
        headers = {key: str(context.resolve(value)) for key, value in headers.items()}

        auth = http_config.get("authentication") or {}
        auth_type = auth.get("type", "none")
        if auth_type == "bearer":
            headers["Authorization"] = f"Bearer {context.resolve(auth.get('token', ''))}"
        elif auth_type == "basic":
            username = context.resolve(auth.get("username", ""))
            password = context.resolve(auth.get("password", ""))
            encoded = base64.b64encode(f"{username}:{password}".encode()).decode()
            headers["Authorization"] = f"Basic {encoded}"
        elif auth_type == "apiKey":
            headers[auth.get("apiKeyHeader", "X-API-Key")] = str(context.resolve(auth.get("apiKey", "")))

        return headers

    def _build_body(self, http_config: Dict[str, Any], method: str, context):
        body = http_config.get("body")
        if method not in BODY_METHODS or body in (None, ""):
            return None, None
        if isinstance(body, (dict, list)):
            return None, context.resolve_object(body)
        return str(context.resolve(body)).encode(), None

    def _parse_response(self, response: httpx.Response, response_type: str) -> Any:
        if response_type == "json":
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text

    def _status_ok(self, status: int, validate_status: Optional[str]) -> bool:
        if not validate_status:
            return 200 <= status < 300
        try:
            return evaluate_condition(validate_status, {"status": status})
        except ConditionEvaluationError as e:
            logger.warning(f"Invalid validateStatus expression, using 2xx: {e}")
            return 200 <= status < 300
