"""Mapping between ``WorkItem`` records and tracker issues.

Translates a work item into an issue create/update payload and maps a
fetched issue back into the ``WorkItem`` shape so the differ can compare
both sides.

Encoding rules:

1. **Labels** -- ``phase:<phase>``, ``discipline:<tag>`` per tag,
   ``priority:<priority>`` and ``ai-assistable`` when the flag is set.
2. **Identity marker** -- the body ends with
   ``<!-- workitem-id: <id> -->``.  Issues without it are not managed by
   this tool and map to ``None``.
3. **Metadata block** -- dependencies, estimate, hint and template id are
   kept in a hidden ``<!-- workitem-meta: {...} -->`` JSON comment.
4. **Description** -- everything in the body before the markers.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from workitem_sync.sync.models import Phase, Priority, WorkItem

logger = logging.getLogger(__name__)

PHASE_PREFIX = "phase:"
DISCIPLINE_PREFIX = "discipline:"
PRIORITY_PREFIX = "priority:"
AI_ASSISTABLE_LABEL = "ai-assistable"

_ID_MARKER = "<!-- workitem-id: {id} -->"
_ID_PATTERN = re.compile(r"<!--\s*workitem-id:\s*(.+?)\s*-->")
_META_PATTERN = re.compile(r"<!--\s*workitem-meta:\s*(\{.*?\})\s*-->", re.S)
_SEPARATOR = "\n\n"


def item_labels(item: WorkItem) -> list[str]:
    """Return the tracker labels encoding *item*'s classification."""
    labels = [f"{PHASE_PREFIX}{item.phase.value}"]
    labels.extend(f"{DISCIPLINE_PREFIX}{tag}" for tag in item.discipline_tags)
    labels.append(f"{PRIORITY_PREFIX}{item.priority.value}")
    if item.ai_assistable:
        labels.append(AI_ASSISTABLE_LABEL)
    return labels


def render_body(item: WorkItem) -> str:
    """Render the issue body: description, then the hidden markers."""
    meta: dict[str, Any] = {"dependencies": list(item.dependencies)}
    if item.estimated_hours is not None:
        meta["estimated_hours"] = item.estimated_hours
    if item.ai_hint is not None:
        meta["ai_hint"] = item.ai_hint
    if item.template_id is not None:
        meta["template_id"] = item.template_id

    parts = []
    if item.description:
        parts.append(item.description)
    parts.append(_ID_MARKER.format(id=item.id))
    parts.append(
        f"<!-- workitem-meta: {json.dumps(meta, sort_keys=True)} -->"
    )
    return _SEPARATOR.join(parts) + "\n"


def item_to_issue_payload(item: WorkItem) -> dict[str, Any]:
    """Build a create/update payload for *item*."""
    return {
        "title": item.title,
        "body": render_body(item),
        "labels": item_labels(item),
    }


def extract_item_id(body: str | None) -> str | None:
    """Return the work item id embedded in an issue body, if any."""
    if not body:
        return None
    match = _ID_PATTERN.search(body)
    return match.group(1) if match else None


def _label_names(issue: dict[str, Any]) -> list[str]:
    names = []
    for label in issue.get("labels") or []:
        name = label.get("name") if isinstance(label, dict) else label
        if name:
            names.append(str(name))
    return names


def _description_from_body(body: str) -> str:
    """Return the text before the identity marker, exactly as rendered.

    Only the separator ``render_body`` puts in front of the marker is
    removed, so leading and trailing whitespace of a description survive a
    round trip.
    """
    match = _ID_PATTERN.search(body)
    text = body[: match.start()] if match else body
    if text.endswith(_SEPARATOR):
        return text[: -len(_SEPARATOR)]
    # hand-edited body with a non-standard separator
    return text.rstrip("\r\n")


def issue_to_item(issue: dict[str, Any]) -> WorkItem | None:
    """Map a fetched issue into a ``WorkItem``.

    Returns ``None`` for issues without an identity marker or whose labels
    cannot be mapped (missing phase or discipline).
    """
    body = issue.get("body") or ""
    item_id = extract_item_id(body)
    if item_id is None:
        return None

    labels = _label_names(issue)
    phase = next(
        (
            name[len(PHASE_PREFIX):]
            for name in labels
            if name.startswith(PHASE_PREFIX)
        ),
        None,
    )
    priority = next(
        (
            name[len(PRIORITY_PREFIX):]
            for name in labels
            if name.startswith(PRIORITY_PREFIX)
        ),
        Priority.MEDIUM.value,
    )
    disciplines = [
        name[len(DISCIPLINE_PREFIX):]
        for name in labels
        if name.startswith(DISCIPLINE_PREFIX)
    ]

    meta: dict[str, Any] = {}
    meta_match = _META_PATTERN.search(body)
    if meta_match:
        try:
            meta = json.loads(meta_match.group(1))
        except json.JSONDecodeError:
            logger.warning(
                "Issue #%s has an unreadable metadata block",
                issue.get("number"),
            )

    description = _description_from_body(body) or None

    try:
        return WorkItem(
            id=item_id,
            title=issue.get("title", ""),
            description=description,
            phase=Phase(phase) if phase else None,
            discipline_tags=disciplines,
            ai_assistable=AI_ASSISTABLE_LABEL in labels,
            ai_hint=meta.get("ai_hint"),
            dependencies=meta.get("dependencies", []),
            priority=Priority(priority),
            estimated_hours=meta.get("estimated_hours"),
            template_id=meta.get("template_id"),
        )
    except (ValueError, ValidationError) as exc:
        logger.warning(
            "Cannot map issue #%s to a work item: %s",
            issue.get("number"),
            exc,
        )
        return None
