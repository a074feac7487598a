"""
Logging Tests
-------------
Turn context propagation and the JSON file format.
"""

import asyncio
import io
import json
import logging

from rich.console import Console

from infra.logging import (
    JSONFormatter,
    TurnAwareRichHandler,
    TurnContext,
    TurnIdFilter,
    get_logger,
    get_thread_id,
    get_turn_id,
)
from providers.connection import ContentPart, ToolResponse


def make_record(msg="hello", **extra):
    record = logging.LogRecord("echo.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestTurnContext:

    def test_sets_and_resets(self):
        assert get_turn_id() is None
        with TurnContext(thread_id="cli") as turn_id:
            assert turn_id.startswith("turn_")
            assert get_turn_id() == turn_id
            assert get_thread_id() == "cli"
        assert get_turn_id() is None
        assert get_thread_id() is None

    def test_isolated_between_tasks(self):
        async def worker(name):
            with TurnContext(turn_id=f"turn_{name}", thread_id=name):
                await asyncio.sleep(0.01)
                return get_turn_id(), get_thread_id()

        async def go():
            return await asyncio.gather(worker("a"), worker("b"))

        assert asyncio.run(go()) == [("turn_a", "a"), ("turn_b", "b")]

    def test_filter_fills_ids(self):
        record = make_record()
        with TurnContext(turn_id="turn_x", thread_id="t1"):
            TurnIdFilter().filter(record)
        assert (record.turn_id, record.thread_id) == ("turn_x", "t1")

    def test_filter_keeps_explicit_turn_id(self):
        record = make_record(turn_id="turn_explicit")
        TurnIdFilter().filter(record)
        assert record.turn_id == "turn_explicit"
        assert record.thread_id == "-"


class TestJSONFormatter:

    def test_extra_fields(self):
        record = make_record("Tool ok", turn_id="turn_1", thread_id="cli",
                             tool_name="read_file", success=True, execution_time_ms=12)

        entry = json.loads(JSONFormatter().format(record))

        assert entry["message"] == "Tool ok"
        assert entry["turn_id"] == "turn_1"
        assert entry["tool_name"] == "read_file"
        assert entry["success"] is True
        assert "provider_id" not in entry


class TestConsoleHandler:

    def test_turn_prefix_stays_on_console(self):
        """The file handler sees the message without the console prefix."""
        output = io.StringIO()
        handler = TurnAwareRichHandler(console=Console(file=output, width=200), show_path=False)
        record = make_record("Tool ok", turn_id="turn_1", thread_id="cli")

        handler.emit(record)
        entry = json.loads(JSONFormatter().format(record))

        assert "[turn_1] Tool ok" in output.getvalue()
        assert record.msg == "Tool ok"
        assert entry["message"] == "Tool ok"

    def test_no_prefix_outside_a_turn(self):
        output = io.StringIO()
        handler = TurnAwareRichHandler(console=Console(file=output, width=200), show_path=False)

        handler.emit(make_record("Starting", turn_id="-"))

        assert "Starting" in output.getvalue()
        assert "[-]" not in output.getvalue()


def test_get_logger_namespaces():
    assert get_logger("core.session").name == "echo.core.session"
    assert get_logger("echo.state").name == "echo.state"


class TestToolResponse:

    def test_text_joins_rendered_parts(self):
        response = ToolResponse(content=(
            ContentPart(type="text", text="line one"),
            ContentPart(type="image", data="aGVsbG8=", mime_type="image/png"),
            ContentPart(type="resource", uri="file:///ws/a.txt"),
        ))

        assert response.text == (
            "line one\n[image: image/png, 8 bytes]\n[resource: file:///ws/a.txt]"
        )

    def test_from_text(self):
        response = ToolResponse.from_text("denied", is_error=True)
        assert response.is_error
        assert response.text == "denied"
