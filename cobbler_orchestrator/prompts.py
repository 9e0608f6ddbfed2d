"""Prompt documents for measure and stitch invocations."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from cobbler_orchestrator.catalog import (
    EXECUTION_POLICY,
    ISSUE_FORMAT_POLICY,
    MEASURE_PROMPT,
    PLANNING_POLICY,
    STITCH_PROMPT,
    substitute,
)
from cobbler_orchestrator.context_builder import dump_yaml

if TYPE_CHECKING:
    from cobbler_orchestrator.catalog import AssetCatalog
    from cobbler_orchestrator.config import CobblerConfig
    from cobbler_orchestrator.models import ProjectContext, Task


def _policy(catalog: AssetCatalog, name: str) -> Any:
    return catalog.get_yaml(name) if name in catalog else None


def build_measure_prompt(
    catalog: AssetCatalog,
    config: CobblerConfig,
    context: ProjectContext,
    limit: int,
) -> str:
    """Render the measure prompt as one YAML document."""
    template = catalog.template(MEASURE_PROMPT)
    values = {
        "limit": limit,
        "lines_min": config.measure.estimated_lines_min,
        "lines_max": config.measure.estimated_lines_max,
    }
    doc: dict[str, Any] = {
        "role": substitute(template.get("role", ""), values),
        "project_context": context.to_dict(),
    }
    planning = _policy(catalog, PLANNING_POLICY)
    if planning:
        doc["planning_policy"] = planning
    issue_format = _policy(catalog, ISSUE_FORMAT_POLICY)
    if issue_format:
        doc["issue_format"] = issue_format
    doc["task"] = substitute(template.get("task", ""), values)
    doc["constraints"] = substitute(template.get("constraints", ""), values)
    doc["output_format"] = substitute(template.get("output_format", ""), values)
    if config.measure.user_prompt:
        doc["additional_context"] = config.measure.user_prompt
    return dump_yaml(doc)


def build_stitch_prompt(catalog: AssetCatalog, task: Task, context: ProjectContext) -> str:
    """Render the stitch prompt for one task. The description is passed verbatim."""
    template = catalog.template(STITCH_PROMPT)
    values = {"task_id": task.id, "title": task.title}
    doc: dict[str, Any] = {
        "role": substitute(template.get("role", ""), values),
        "project_context": context.to_dict(),
    }
    execution = _policy(catalog, EXECUTION_POLICY)
    if execution:
        doc["execution_policy"] = execution
    doc["task"] = substitute(template.get("task", ""), values)
    doc["constraints"] = substitute(template.get("constraints", ""), values)
    doc["description"] = task.description
    return dump_yaml(doc)
