"""Built-in Node Executors

Concrete executors for the common canvas node types. Each validates its
own config at the point of use; the engine only wires inputs and outputs.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Mapping, Optional

import httpx

from .. import settings
from .expressions import ExpressionError, evaluate, validate_expression
from .registry import BaseNodeExecutor, register_node_type

logger = logging.getLogger(__name__)

_TEMPLATE_TOKEN = re.compile(r"\{\{\s*([\w.-]+)\s*\}\}")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


@register_node_type(
    node_type="text_input",
    display_name="Text Input",
    description="Entry point; receives the prompt the workflow was triggered with",
    category="input",
    input_schema={
        "type": "object",
        "properties": {
            "label": {"type": "string"},
            "text": {"type": "string", "description": "Default text when run standalone"},
        },
    },
    output_schema={"type": "string"},
    entry=True,
)
class TextInputNode(BaseNodeExecutor):
    """Entry node. The coordinator seeds it with the run input, so execute()
    only runs when the node is invoked directly."""

    async def execute(self, config, inputs, context):
        if inputs:
            return self.primary_input(inputs)
        return (config or {}).get("text", "")


@register_node_type(
    node_type="transform",
    display_name="Transform",
    description="Transforms text or data from upstream nodes",
    category="processing",
    input_schema={
        "type": "object",
        "properties": {
            "operation": {
                "type": "string",
                "enum": ["uppercase", "lowercase", "trim", "template", "extract"],
            },
            "template": {"type": "string", "description": "Uses {{input}} or {{<node_id>}}"},
            "path": {"type": "string", "description": "Dot path for extract"},
        },
        "required": ["operation"],
    },
    output_schema={"type": "any"},
)
class TransformNode(BaseNodeExecutor):
    """Applies a single text/data operation to its input."""

    OPERATIONS = ("uppercase", "lowercase", "trim", "template", "extract")

    async def execute(self, config, inputs, context):
        operation = config["operation"]
        value = self.primary_input(inputs)

        if operation == "uppercase":
            return _as_text(value).upper()
        if operation == "lowercase":
            return _as_text(value).lower()
        if operation == "trim":
            return _as_text(value).strip()
        if operation == "template":
            return self._render(config.get("template", ""), value, inputs)
        return self._extract(value, config.get("path", ""))

    def validate_config(self, config: Any) -> List[Dict[str, str]]:
        errors = super().validate_config(config)
        if errors:
            return errors

        operation = config.get("operation")
        if operation not in self.OPERATIONS:
            errors.append({
                "field": "operation",
                "error": f"must be one of {', '.join(self.OPERATIONS)}",
            })
        elif operation == "template" and not isinstance(config.get("template"), str):
            errors.append({"field": "template", "error": "template operation needs a template string"})
        elif operation == "extract" and not config.get("path"):
            errors.append({"field": "path", "error": "extract operation needs a path"})
        return errors

    @staticmethod
    def _render(template: str, value: Any, inputs: Mapping[str, Any]) -> str:
        def replace(match: "re.Match[str]") -> str:
            name = match.group(1)
            if name == "input":
                return _as_text(value)
            if name in inputs:
                return _as_text(inputs[name])
            return match.group(0)

        return _TEMPLATE_TOKEN.sub(replace, template)

    @staticmethod
    def _extract(value: Any, path: str) -> Any:
        current = value
        for part in path.split("."):
            if isinstance(current, Mapping) and part in current:
                current = current[part]
            elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
                current = current[int(part)]
            else:
                raise KeyError(f"path '{path}' not found at '{part}'")
        return current


@register_node_type(
    node_type="decision",
    display_name="Decision",
    description="Evaluates a condition over its inputs",
    category="control",
    input_schema={
        "type": "object",
        "properties": {
            "condition": {"type": "string"},
            "true_label": {"type": "string"},
            "false_label": {"type": "string"},
        },
        "required": ["condition"],
    },
    output_schema={
        "type": "object",
        "properties": {
            "result": {"type": "boolean"},
            "branch": {"type": "string"},
            "value": {"type": "any"},
        },
    },
)
class DecisionNode(BaseNodeExecutor):
    """Evaluates ``condition`` with ``input`` (the primary input), ``inputs``
    (all inputs by key), ``metadata`` and each input key as variables."""

    async def execute(self, config, inputs, context):
        value = self.primary_input(inputs)
        variables: Dict[str, Any] = {
            key: item for key, item in inputs.items() if key.isidentifier()
        }
        variables.update({
            "input": value,
            "inputs": dict(inputs),
            "metadata": dict(context.metadata),
        })

        try:
            result = bool(evaluate(config["condition"], variables))
        except ExpressionError as e:
            raise ValueError(f"condition '{config['condition']}' failed: {e}") from e

        branch = config.get("true_label", "true") if result else config.get("false_label", "false")
        logger.info(f"DecisionNode {context.node_id}: '{config['condition']}' -> {result}")
        return {"result": result, "branch": branch, "value": value}

    def validate_config(self, config: Any) -> List[Dict[str, str]]:
        errors = super().validate_config(config)
        if errors:
            return errors
        for problem in validate_expression(config["condition"]):
            errors.append({"field": "condition", "error": problem})
        return errors


@register_node_type(
    node_type="http_request",
    display_name="HTTP Request",
    description="Makes HTTP requests to external APIs",
    category="integration",
    input_schema={
        "type": "object",
        "properties": {
            "url": {"type": "string", "format": "uri"},
            "method": {"type": "string", "enum": ["GET", "POST", "PUT", "DELETE", "PATCH"]},
            "headers": {"type": "object"},
            "params": {"type": "object"},
            "body": {"type": "any"},
            "timeout": {"type": "number"},
            "fail_on_error_status": {"type": "boolean"},
        },
        "required": ["url"],
    },
    output_schema={
        "type": "object",
        "properties": {
            "status_code": {"type": "number"},
            "headers": {"type": "object"},
            "body": {"type": "any"},
        },
    },
)
class HttpRequestNode(BaseNodeExecutor):
    """Sends one HTTP request. Without a configured body, POST/PUT/PATCH send
    the primary input as JSON."""

    METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport

    async def execute(self, config, inputs, context):
        method = config.get("method", "GET").upper()
        timeout = float(config.get("timeout", settings.HTTP_REQUEST_TIMEOUT))

        body = config.get("body")
        if body is None and method in ("POST", "PUT", "PATCH"):
            body = self.primary_input(inputs)

        logger.info(f"HttpRequestNode {context.node_id}: {method} {config['url']}")
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            resp = await client.request(
                method,
                config["url"],
                headers=config.get("headers") or None,
                params=config.get("params") or None,
                json=body if body is not None else None,
            )

        if config.get("fail_on_error_status", True):
            resp.raise_for_status()

        try:
            payload: Any = resp.json()
        except ValueError:
            payload = resp.text

        return {
            "status_code": resp.status_code,
            "headers": dict(resp.headers),
            "body": payload,
        }

    def validate_config(self, config: Any) -> List[Dict[str, str]]:
        errors = super().validate_config(config)
        if errors:
            return errors

        url = config.get("url", "")
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            errors.append({"field": "url", "error": "must be an http(s) URL"})

        method = str(config.get("method", "GET")).upper()
        if method not in self.METHODS:
            errors.append({"field": "method", "error": f"must be one of {', '.join(self.METHODS)}"})
        return errors


@register_node_type(
    node_type="output",
    display_name="Output",
    description="Marks the value returned by the workflow",
    category="output",
    input_schema={"type": "object", "properties": {"label": {"type": "string"}}},
    output_schema={"type": "any"},
)
class OutputNode(BaseNodeExecutor):
    """Passes its input through as the workflow result."""

    async def execute(self, config, inputs, context):
        return self.primary_input(inputs)
