"""Workflow document codec: JSON/YAML text and mappings to models and back."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from ..core.clock import Clock, utc_now
from .errors import ValidationIssue, WorkflowValidationError
from .schemas import Workflow
from .validator import issues_from_pydantic

logger = logging.getLogger(__name__)

JSON_SCHEMA_DIALECT = "https://json-schema.org/draft/2020-12/schema"


def _decode_text(text: str) -> Any:
    """Decode JSON text, falling back to YAML for anything not starting like JSON."""
    stripped = text.lstrip()
    try:
        if stripped.startswith(("{", "[")):
            return json.loads(stripped)
        return yaml.safe_load(stripped)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise WorkflowValidationError([
            ValidationIssue(location="<document>", message=f"Document is not valid JSON or YAML: {exc}")
        ]) from exc


def parse_workflow(source: str | Mapping[str, Any] | Workflow, clock: Clock | None = None) -> Workflow:
    """Parse a workflow from JSON/YAML text or a mapping.

    Structural errors (missing required fields, unknown enum values, parameter
    shapes that do not match the provider) are all collected and raised in a
    single WorkflowValidationError. Semantic checks are left to the validator.

    Args:
        source: Document text, decoded mapping, or an existing Workflow.
        clock: Time source used to fill ``CreatedOn`` when the document omits it.

    Returns:
        The parsed workflow.
    """
    if isinstance(source, Workflow):
        return source

    data = _decode_text(source) if isinstance(source, str) else source
    if not isinstance(data, Mapping):
        raise WorkflowValidationError([
            ValidationIssue(
                location="<document>",
                message=f"Workflow document must be an object, got {type(data).__name__}",
            )
        ])

    try:
        workflow = Workflow.model_validate(dict(data))
    except PydanticValidationError as exc:
        raise WorkflowValidationError(issues_from_pydantic(exc, data)) from None

    if workflow.created_on is None:
        workflow.created_on = (clock or utc_now)()

    logger.debug("Parsed workflow '%s' with %d rules", workflow.workflow_name, len(workflow.rules))
    return workflow


def workflow_to_document(workflow: Workflow) -> dict[str, Any]:
    """Convert a workflow to a JSON-compatible mapping with wire field names."""
    return workflow.model_dump(mode="json", by_alias=True, exclude_unset=True)


def dump_workflow(workflow: Workflow, fmt: str = "json") -> str:
    """Serialize a workflow as JSON (default) or YAML text."""
    data = workflow_to_document(workflow)
    if fmt == "json":
        return json.dumps(data, indent=2, ensure_ascii=False)
    if fmt == "yaml":
        return yaml.safe_dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)
    raise ValueError(f"Unsupported format: {fmt}")


def workflow_json_schema() -> dict[str, Any]:
    """JSON Schema of the workflow document.

    ``Parameters`` is exported as a ``oneOf`` over the provider variants.
    """
    schema = Workflow.model_json_schema(by_alias=True)
    schema = {"$schema": JSON_SCHEMA_DIALECT, **schema}

    rule_schema = schema.get("$defs", {}).get("Rule", {})
    parameters = rule_schema.get("properties", {}).get("Parameters", {})
    if "anyOf" in parameters:
        parameters["oneOf"] = parameters.pop("anyOf")
    return schema
