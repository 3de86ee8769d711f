"""Tests for contextual logging."""

import logging

import pytest

from studio.utils.logging_setup import ContextFilter, log_context


def _record() -> logging.LogRecord:
    return logging.LogRecord("studio", logging.INFO, __file__, 1, "hello", None, None)


class TestLogContext:
    def test_defaults_to_dash(self):
        record = _record()
        ContextFilter().filter(record)
        assert (record.request_id, record.segment_id, record.revision_id) == ("-", "-", "-")

    def test_nested_contexts_restore(self):
        with log_context(request_id="req-1"):
            with log_context(segment_id="seg-1", revision_id="rev-1"):
                record = _record()
                ContextFilter().filter(record)
                assert (record.request_id, record.segment_id, record.revision_id) == ("req-1", "seg-1", "rev-1")
            record = _record()
            ContextFilter().filter(record)
            assert (record.request_id, record.segment_id) == ("req-1", "-")


@pytest.mark.asyncio
async def test_generation_logs_never_contain_the_key(container, user_credential, caplog):
    caplog.set_level(logging.DEBUG)
    project = await container.segments.create_project("Pilot")
    track = await container.segments.create_track(project.id, "V1")
    segment = await container.segments.create_segment(track.id, 0.0, 2.0)
    revision = await container.revisions.create_revision(segment.id, "veo", {"root_prompt": "Rain"})

    await container.orchestrator.run_revision(revision.id, user_credential)

    assert caplog.records
    assert user_credential.key not in caplog.text
