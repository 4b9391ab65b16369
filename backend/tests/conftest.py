"""Pytest configuration and fixtures."""

import os

# Settings are read once at import time, so the environment must be set first.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["OPENAI_API_KEY"] = "test-openai-key"
os.environ["APP_ENV"] = "test"
os.environ["CONVERSATION_AUTOSAVE_SECONDS"] = "0"
os.environ.pop("BOOTSTRAP_ADMIN_EMAIL", None)
os.environ.pop("BOOTSTRAP_ADMIN_PASSWORD", None)

from typing import List, Optional  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from aipm.core.enums import GlobalRole, ProjectRole  # noqa: E402
from aipm.db import Base, SessionLocal, engine  # noqa: E402
from aipm.dependencies import get_completion_service  # noqa: E402
from aipm.errors import AiServiceError  # noqa: E402
from aipm.main import app  # noqa: E402
from aipm.models import PlanningDocument, Project, ProjectMember, User  # noqa: E402
from aipm.security import create_access_token, get_password_hash  # noqa: E402
from aipm.services.access import Actor, actor_from_user  # noqa: E402
from aipm.services.completion import StreamChunk, parse_conflict_analysis  # noqa: E402
from aipm.services.conversations import ConversationManager  # noqa: E402

PASSWORD = "correct-horse-battery"
PASSWORD_HASH = get_password_hash(PASSWORD)


class FakeCompletionService:
    """Stands in for the completion adapter; records every call."""

    def __init__(self, reply: str = "Let's define your target users.", stream_parts: Optional[List[str]] = None):
        self.reply = reply
        self.stream_parts = stream_parts if stream_parts is not None else ["Let's ", "define ", "users."]
        self.error: Optional[str] = None
        self.calls = []
        self.conflict_reply = (
            '{"hasConflicts": false, "conflictLevel": "none", "conflicts": [], '
            '"recommendations": ["Keep terminology aligned"], "summary": "Consistent."}'
        )
        self.conflict_calls = []

    def generate_response(self, messages, workflow_step, project_context=None):
        self.calls.append((list(messages), workflow_step, project_context))
        if self.error:
            raise AiServiceError(self.error)
        return self.reply

    def generate_streaming_response(self, messages, workflow_step, project_context=None):
        self.calls.append((list(messages), workflow_step, project_context))
        content = ""
        for part in self.stream_parts:
            content += part
            yield StreamChunk(content=content, is_complete=False)
        if self.error:
            yield StreamChunk(content="", is_complete=True, error=self.error)
            return
        yield StreamChunk(content=content, is_complete=True)

    def analyze_conflicts(self, title, content, workflow_step, official_documents):
        self.conflict_calls.append((title, content, workflow_step, list(official_documents)))
        if self.error:
            raise AiServiceError(self.error)
        return parse_conflict_analysis(self.conflict_reply)


@pytest.fixture(autouse=True)
def _schema():
    """Fresh tables for every test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_completion():
    return FakeCompletionService()


@pytest.fixture
def client(fake_completion):
    app.dependency_overrides[get_completion_service] = lambda: fake_completion
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def conversations():
    return ConversationManager(max_messages=100, max_message_length=5000)


# ──────────────────────────────────────────────────────────────────────
# Factories
# ──────────────────────────────────────────────────────────────────────


def make_user(db, email: str, role: GlobalRole = GlobalRole.USER, name: Optional[str] = None) -> User:
    user = User(email=email, name=name or email.split("@")[0], password_hash=PASSWORD_HASH, role=role.value)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_project(db, creator: User, name: str = "Webtoon Platform", description: Optional[str] = None) -> Project:
    project = Project(name=name, description=description, created_by=creator.id)
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


def make_member(db, project: Project, user: User, role: ProjectRole, added_by: Optional[User] = None) -> ProjectMember:
    member = ProjectMember(
        project_id=project.id,
        user_id=user.id,
        role=role.value,
        added_by=added_by.id if added_by else None,
    )
    db.add(member)
    db.commit()
    db.refresh(member)
    return member


def actor(user: User) -> Actor:
    return actor_from_user(user)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


def reload(db, document: PlanningDocument) -> PlanningDocument:
    db.expire_all()
    return db.query(PlanningDocument).filter(PlanningDocument.id == document.id).one()


@pytest.fixture
def admin(db):
    return make_user(db, "admin@funcommute.io", GlobalRole.ADMIN, name="Admin")


@pytest.fixture
def planner(db):
    return make_user(db, "planner@funcommute.io", name="Service Planner")


@pytest.fixture
def designer(db):
    return make_user(db, "designer@funcommute.io", name="UX Planner")


@pytest.fixture
def outsider(db):
    return make_user(db, "outsider@funcommute.io", name="Outsider")


@pytest.fixture
def project(db, admin, planner, designer):
    """Project with a service planner and a UX planner."""
    p = make_project(db, admin)
    make_member(db, p, planner, ProjectRole.SERVICE_PLANNING, added_by=admin)
    make_member(db, p, designer, ProjectRole.UX_PLANNING, added_by=admin)
    return p
