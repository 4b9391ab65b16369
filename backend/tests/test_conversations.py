"""Tests for the buffered conversation manager."""

from datetime import datetime, timedelta
import time

import pytest

from aipm.core.enums import ActivityType, MessageRole
from aipm.db import SessionLocal
from aipm.errors import ValidationError
from aipm.models import AIConversation, ProjectActivity
from aipm.schemas.chat import ChatMessage
from aipm.services.conversations import ConversationManager, merge_messages


def _say(conversations, project, user, step, *contents):
    for content in contents:
        conversations.add_message(project.id, step, user.id, MessageRole.USER, content)


def _contents(messages):
    return [m.content for m in messages]


class TestMergeMessages:
    def test_buffered_copy_wins_and_order_is_by_timestamp(self):
        t0 = datetime(2024, 1, 1, 12, 0, 0)
        saved = [
            ChatMessage(id="a", role=MessageRole.USER, content="old a", timestamp=t0),
            ChatMessage(id="b", role=MessageRole.ASSISTANT, content="b", timestamp=t0 + timedelta(seconds=2)),
        ]
        pending = [
            ChatMessage(id="c", role=MessageRole.USER, content="c", timestamp=t0 + timedelta(seconds=1)),
            ChatMessage(id="a", role=MessageRole.USER, content="new a", timestamp=t0),
        ]
        merged = merge_messages(saved, pending)
        assert [m.id for m in merged] == ["a", "c", "b"]
        assert merged[0].content == "new a"


class TestBuffering:
    def test_messages_are_buffered_until_saved(self, db, conversations, project, planner):
        _say(conversations, project, planner, 1, "hello")
        assert db.query(AIConversation).count() == 0
        assert _contents(conversations.get_current_messages(db, project.id, 1, planner.id)) == ["hello"]

    def test_message_ids_are_unique(self, conversations, project, planner):
        first = conversations.add_message(project.id, 1, planner.id, MessageRole.USER, "one")
        second = conversations.add_message(project.id, 1, planner.id, MessageRole.USER, "two")
        assert first.id != second.id
        assert first.id.startswith("msg_")

    @pytest.mark.parametrize("content", ["", "   "])
    def test_empty_message_rejected(self, conversations, project, planner, content):
        with pytest.raises(ValidationError):
            conversations.add_message(project.id, 1, planner.id, MessageRole.USER, content)

    def test_user_message_length_limit(self, project, planner):
        manager = ConversationManager(max_message_length=10)
        with pytest.raises(ValidationError):
            manager.add_message(project.id, 1, planner.id, MessageRole.USER, "x" * 11)
        reply = manager.add_message(project.id, 1, planner.id, MessageRole.ASSISTANT, "y" * 50)
        assert len(reply.content) == 50

    def test_keys_are_isolated(self, db, conversations, project, planner, designer):
        _say(conversations, project, planner, 1, "planner step 1")
        _say(conversations, project, planner, 2, "planner step 2")
        _say(conversations, project, designer, 1, "designer step 1")
        conversations.force_save(db, project.id, 1, planner.id)

        assert _contents(conversations.get_current_messages(db, project.id, 1, planner.id)) == ["planner step 1"]
        assert _contents(conversations.get_current_messages(db, project.id, 2, planner.id)) == ["planner step 2"]
        assert _contents(conversations.get_current_messages(db, project.id, 1, designer.id)) == ["designer step 1"]


class TestForceSave:
    def test_noop_without_buffer(self, db, conversations, project, planner):
        assert conversations.force_save(db, project.id, 1, planner.id) is None
        assert db.query(AIConversation).count() == 0

    def test_creates_then_appends(self, db, conversations, project, planner):
        _say(conversations, project, planner, 1, "first")
        conversations.add_message(project.id, 1, planner.id, MessageRole.ASSISTANT, "reply")
        record = conversations.force_save(db, project.id, 1, planner.id)
        assert [m["content"] for m in record.messages] == ["first", "reply"]
        assert conversations.pending_messages(project.id, 1, planner.id) == []

        _say(conversations, project, planner, 1, "second")
        record = conversations.force_save(db, project.id, 1, planner.id)
        assert [m["content"] for m in record.messages] == ["first", "reply", "second"]
        assert db.query(AIConversation).count() == 1

    def test_start_is_logged_once(self, db, conversations, project, planner):
        _say(conversations, project, planner, 3, "a")
        conversations.force_save(db, project.id, 3, planner.id)
        _say(conversations, project, planner, 3, "b")
        conversations.force_save(db, project.id, 3, planner.id)
        started = (
            db.query(ProjectActivity)
            .filter(ProjectActivity.activity_type == ActivityType.AI_CONVERSATION_STARTED.value)
            .count()
        )
        assert started == 1

    def test_trims_to_most_recent(self, db, project, planner):
        manager = ConversationManager(max_messages=3)
        _say(manager, project, planner, 1, "m1", "m2", "m3", "m4", "m5")
        record = manager.force_save(db, project.id, 1, planner.id)
        assert [m["content"] for m in record.messages] == ["m3", "m4", "m5"]

    def test_saved_rows_survive_a_new_manager(self, db, conversations, project, planner):
        _say(conversations, project, planner, 1, "persisted")
        conversations.force_save(db, project.id, 1, planner.id)
        fresh = ConversationManager()
        assert _contents(fresh.get_current_messages(db, project.id, 1, planner.id)) == ["persisted"]


class TestClearAndStats:
    def test_clear_removes_saved_and_buffered(self, db, conversations, project, planner):
        _say(conversations, project, planner, 1, "saved")
        conversations.force_save(db, project.id, 1, planner.id)
        _say(conversations, project, planner, 1, "buffered")

        assert conversations.clear_conversation(db, project.id, 1, planner.id) is True
        assert conversations.get_current_messages(db, project.id, 1, planner.id) == []
        assert db.query(AIConversation).count() == 0

    def test_clear_without_record(self, db, conversations, project, planner):
        _say(conversations, project, planner, 1, "buffered only")
        assert conversations.clear_conversation(db, project.id, 1, planner.id) is False
        assert conversations.pending_messages(project.id, 1, planner.id) == []

    def test_stats(self, db, conversations, project, planner):
        empty = conversations.conversation_stats(db, project.id, 1, planner.id)
        assert (empty.message_count, empty.last_activity) == (0, None)

        _say(conversations, project, planner, 1, "q1", "q2")
        conversations.add_message(project.id, 1, planner.id, MessageRole.ASSISTANT, "a1")
        stats = conversations.conversation_stats(db, project.id, 1, planner.id)
        assert stats.message_count == 3
        assert stats.user_message_count == 2
        assert stats.assistant_message_count == 1
        assert stats.last_activity is not None


class TestExportAndSummaries:
    def test_markdown_export(self, db, conversations, project, planner):
        _say(conversations, project, planner, 1, "Build a webtoon platform")
        conversations.add_message(project.id, 1, planner.id, MessageRole.ASSISTANT, "Who reads it?")
        text = conversations.export_conversation(db, project.id, 1, planner.id, project.name)
        assert text.startswith(f"# {project.name} - Step 1: Service Overview & Goals")
        assert "### User" in text and "### Assistant" in text
        assert text.index("Build a webtoon platform") < text.index("Who reads it?")

    def test_text_export(self, db, conversations, project, planner):
        _say(conversations, project, planner, 2, "Target 10-30s")
        text = conversations.export_conversation(db, project.id, 2, planner.id, project.name, fmt="text")
        assert "User: Target 10-30s" in text
        assert not text.startswith("#")

    def test_unknown_export_format(self, db, conversations, project, planner):
        with pytest.raises(ValidationError):
            conversations.export_conversation(db, project.id, 1, planner.id, project.name, fmt="pdf")

    def test_summaries_cover_saved_and_buffered_steps(self, db, conversations, project, planner, designer):
        _say(conversations, project, planner, 1, "one", "two")
        conversations.force_save(db, project.id, 1, planner.id)
        _say(conversations, project, planner, 4, "ux question")
        _say(conversations, project, designer, 2, "not mine")

        history = conversations.list_summaries(db, project.id, planner.id)
        assert [s.workflow_step for s in history.conversations] == [1, 4]
        assert history.conversations[0].last_message_preview == "two"
        assert history.stats.total_conversations == 2
        assert history.stats.total_messages == 3
        assert history.stats.most_active_step == 1
        assert history.stats.activity_by_step == {1: 2, 4: 1}
        assert history.stats.recent_activity_count == 2


class TestLifecycleHooks:
    def test_discard_project(self, db, conversations, project, planner):
        _say(conversations, project, planner, 1, "gone")
        conversations.discard_project(project.id)
        assert conversations.pending_messages(project.id, 1, planner.id) == []

    def test_flush_all_writes_every_buffer(self, db, conversations, project, planner, designer):
        _say(conversations, project, planner, 1, "a")
        _say(conversations, project, designer, 4, "b")
        assert conversations.flush_all(SessionLocal) == 2
        assert db.query(AIConversation).count() == 2
        assert conversations.flush_all(SessionLocal) == 0

    def test_locks_are_released_after_use(self, db, conversations, project, planner):
        for step in range(1, 10):
            _say(conversations, project, planner, step, f"step {step}")
            conversations.force_save(db, project.id, step, planner.id)
            conversations.clear_conversation(db, project.id, step, planner.id)
        _say(conversations, project, planner, 1, "buffered")
        conversations.discard_project(project.id)
        assert len(conversations._locks) == 0


class TestAutosave:
    def test_background_flush(self, db, conversations, project, planner):
        _say(conversations, project, planner, 2, "saved without a request")
        assert conversations.start_autosave(SessionLocal, 0.05)
        try:
            deadline = time.monotonic() + 5
            while conversations.pending_messages(project.id, 2, planner.id) and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            conversations.stop_autosave()

        stored = db.query(AIConversation).one()
        assert [m["content"] for m in stored.messages] == ["saved without a request"]

    def test_zero_interval_disables(self, conversations):
        assert conversations.start_autosave(SessionLocal, 0) is False
        conversations.stop_autosave()
