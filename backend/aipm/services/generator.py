"""
Document generator.

Turns the user's side of a step conversation into a private draft document.
Rendering is deterministic: the same project name and messages always give
the same title and content.
"""
from dataclasses import dataclass
from typing import List
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from aipm.core.enums import MessageRole
from aipm.core.workflow import DOCUMENT_SECTIONS, STEP_GUIDANCE, step_name
from aipm.errors import ValidationError
from aipm.models import PlanningDocument
from aipm.services import lifecycle
from aipm.services.access import Actor, authorize_project_access, get_project_or_404
from aipm.services.conversations import ConversationManager

logger = logging.getLogger(__name__)

SECTION_PLACEHOLDER = "_To be completed with the team._"
TRUNCATION_MARKER = " [...]"

# Keeps generated drafts well under lifecycle.MAX_CONTENT_LENGTH.
MAX_ITEM_LENGTH = 2000
MAX_SUMMARY_LENGTH = 60_000


@dataclass
class GeneratedDocument:
    title: str
    content: str


def _bullet(message: str) -> str:
    """One list item per message; continuation lines are indented under it."""
    text = message.strip()
    if len(text) > MAX_ITEM_LENGTH:
        text = text[:MAX_ITEM_LENGTH].rstrip() + TRUNCATION_MARKER
    first, *rest = text.splitlines() or [""]
    return "\n".join([f"- {first}"] + [f"  {line}" if line.strip() else "" for line in rest])


def _summary(user_messages: List[str]) -> List[str]:
    items = []
    used = 0
    for index, message in enumerate(user_messages):
        item = _bullet(message)
        if used + len(item) + 1 > MAX_SUMMARY_LENGTH:
            items.append(f"- _{len(user_messages) - index} more message(s) not included._")
            break
        items.append(item)
        used += len(item) + 1
    return items


def render_document(project_name: str, workflow_step: int, user_messages: List[str]) -> GeneratedDocument:
    title = step_name(workflow_step)
    lines = [
        f"# {title}",
        "",
        f"**Project:** {project_name}",
        f"**Workflow step:** {workflow_step}",
        "",
        "## Goal",
        "",
        STEP_GUIDANCE[workflow_step],
        "",
        "## Discussion summary",
        "",
    ]
    lines.extend(_summary(user_messages))
    for section in DOCUMENT_SECTIONS[workflow_step]:
        lines.extend(["", f"## {section}", "", SECTION_PLACEHOLDER])
    return GeneratedDocument(title=title, content="\n".join(lines) + "\n")


def generate_document(
    db: Session,
    actor: Actor,
    project_id: UUID,
    workflow_step: int,
    conversations: ConversationManager,
) -> PlanningDocument:
    authorize_project_access(db, actor, project_id)
    project = get_project_or_404(db, project_id)
    if workflow_step not in DOCUMENT_SECTIONS:
        raise ValidationError("Workflow step must be an integer between 1 and 9")

    messages = conversations.get_current_messages(db, project_id, workflow_step, actor.user_id)
    user_messages = [m.content for m in messages if m.role == MessageRole.USER and m.content.strip()]
    if not user_messages:
        raise ValidationError("There is no conversation to generate a document from")

    generated = render_document(project.name, workflow_step, user_messages)
    document = lifecycle.create_document(
        db, actor, project_id, workflow_step, generated.title, generated.content
    )
    logger.info(
        f"Generated document {document.id} from {len(user_messages)} message(s) "
        f"for project {project_id} step {workflow_step}"
    )
    return document
