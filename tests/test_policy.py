"""
Workflow Policy Tests
---------------------
The gate between validating and gated tools.

Tests cover:
- Unknown tools and bad arguments are never dispatched
- A gated call without a prior pass never reaches its provider
- A passing validation earlier in the same plan opens the gate
- Failed validation keeps the gate closed
- consume_pass limits one pass to one gated call
- Policy file loading
"""

import asyncio
import logging
import textwrap

import pytest

from core.errors import ConfigError, ErrorKind
from fakes import handles_for, mail_connection
from tools.executor import ToolExecutor
from tools.plan import ExecutionPlan
from tools.policy import PolicyConfig, PolicyEngine, PolicyStatus, TurnState
from tools.registry import ToolRegistry
from planner.adapter import ProposedCall


def make_plan(*calls):
    return ExecutionPlan.from_calls(
        [ProposedCall(name=name, arguments=args) for name, args in calls]
    )


def run_plan(handles, policy_config, plan, turn_state=None):
    registry = ToolRegistry.build(handles.values(), policy_config.classes)
    policy = PolicyEngine(registry, policy_config)
    executor = ToolExecutor(handles, policy, timeout_seconds=5)
    turn_state = turn_state if turn_state is not None else TurnState()

    async def go():
        return await executor.run_plan(policy.screen(plan), turn_state)

    return asyncio.run(go()), turn_state


class TestScreening:
    """Static checks done once per plan."""

    def test_unknown_tool_rejected(self, handles, policy_config):
        registry = ToolRegistry.build(handles.values(), policy_config.classes)
        policy = PolicyEngine(registry, policy_config)

        decisions = policy.screen(make_plan(("format_disk", {})))

        assert decisions[0].status == PolicyStatus.UNKNOWN_TOOL
        assert decisions[0].to_result().error_kind == ErrorKind.UNKNOWN_TOOL

    def test_schema_violation_rejected(self, handles, policy_config):
        registry = ToolRegistry.build(handles.values(), policy_config.classes)
        policy = PolicyEngine(registry, policy_config)

        decisions = policy.screen(make_plan(("read_file", {"path": 3})))

        assert decisions[0].status == PolicyStatus.SCHEMA_INVALID
        assert decisions[0].to_result().error_kind == ErrorKind.SCHEMA_VALIDATION

    def test_rejections_are_not_dispatched(self, files, mail, policy_config):
        handles = handles_for(files, mail)
        results, _ = run_plan(
            handles, policy_config,
            make_plan(("format_disk", {}), ("read_file", "not json")),
        )

        assert [r.error_kind for r in results] == [
            ErrorKind.UNKNOWN_TOOL, ErrorKind.SCHEMA_VALIDATION
        ]
        assert sum(files.calls.values()) == 0
        assert all(not r.dispatched for r in results)

    def test_rejection_is_logged_with_turn(self, handles, policy_config, caplog):
        registry = ToolRegistry.build(handles.values(), policy_config.classes)
        policy = PolicyEngine(registry, policy_config)

        with caplog.at_level(logging.WARNING, logger="echo.tools.policy"):
            policy.screen(make_plan(("format_disk", {})))

        assert "UNKNOWN_TOOL" in caplog.text


class TestGate:
    """Gated tools require a passing validating tool earlier in the turn."""

    def test_gated_without_validation_never_dispatched(self, policy_config):
        """create_draft alone: refused, provider never sees it."""
        mail = mail_connection()
        results, _ = run_plan(
            handles_for(mail), policy_config,
            make_plan(("create_draft", {"content": "Hi"})),
        )

        assert results[0].error_kind == ErrorKind.POLICY_VIOLATION
        assert mail.calls["create_draft"] == 0

    def test_validation_pass_opens_gate_in_same_plan(self, policy_config):
        """[quality_check -> OK, create_draft]: the draft is committed once."""
        mail = mail_connection(quality=lambda args: "OK")
        results, turn_state = run_plan(
            handles_for(mail), policy_config,
            make_plan(
                ("quality_check", {"content": "Hi"}),
                ("create_draft", {"content": "Hi"}),
            ),
        )

        assert all(r.success for r in results)
        assert mail.calls["create_draft"] == 1
        assert turn_state.passed_tools == ["quality_check"]

    def test_gated_before_validation_in_same_plan_refused(self, policy_config):
        """Order matters: the gate is checked at dispatch time."""
        mail = mail_connection(quality=lambda args: "OK")
        results, _ = run_plan(
            handles_for(mail), policy_config,
            make_plan(
                ("create_draft", {"content": "Hi"}),
                ("quality_check", {"content": "Hi"}),
            ),
        )

        assert results[0].error_kind == ErrorKind.POLICY_VIOLATION
        assert results[1].success
        assert mail.calls["create_draft"] == 0

    def test_failed_validation_keeps_gate_closed(self, policy_config):
        """[quality_check -> REJECTED, create_draft]: nothing is committed."""
        mail = mail_connection(quality=lambda args: "REJECTED: tone is rude")
        results, turn_state = run_plan(
            handles_for(mail), policy_config,
            make_plan(
                ("quality_check", {"content": "Hi"}),
                ("create_draft", {"content": "Hi"}),
            ),
        )

        assert results[0].success
        assert results[1].error_kind == ErrorKind.POLICY_VIOLATION
        assert "did not pass" in results[1].content
        assert mail.calls["create_draft"] == 0
        assert turn_state.passed_tools == []

    def test_failed_validation_call_keeps_gate_closed(self, policy_config):
        """A validating tool that errors is not a pass."""
        from providers.connection import ToolResponse

        mail = mail_connection(quality=lambda args: ToolResponse.from_text("OK", is_error=True))
        results, _ = run_plan(
            handles_for(mail), policy_config,
            make_plan(
                ("quality_check", {"content": "Hi"}),
                ("send_email", {"content": "Hi"}),
            ),
        )

        assert results[0].error_kind == ErrorKind.PROVIDER_ERROR
        assert results[1].error_kind == ErrorKind.POLICY_VIOLATION
        assert mail.calls["send_email"] == 0

    def test_pass_persists_across_cycles_of_one_turn(self, policy_config):
        mail = mail_connection(quality=lambda args: "ok, ship it")
        turn_state = TurnState()

        run_plan(handles_for(mail), policy_config,
                 make_plan(("quality_check", {"content": "Hi"})), turn_state)
        results, _ = run_plan(handles_for(mail), policy_config,
                              make_plan(("send_email", {"content": "Hi"})), turn_state)

        assert results[0].success
        assert mail.calls["send_email"] == 1

    def test_fresh_turn_state_starts_closed(self, policy_config):
        mail = mail_connection()
        run_plan(handles_for(mail), policy_config,
                 make_plan(("quality_check", {"content": "Hi"})), TurnState())
        results, _ = run_plan(handles_for(mail), policy_config,
                              make_plan(("send_email", {"content": "Hi"})), TurnState())

        assert results[0].error_kind == ErrorKind.POLICY_VIOLATION
        assert mail.calls["send_email"] == 0

    def test_consume_pass_allows_one_gated_call(self):
        config = PolicyConfig(
            validating={"quality_check"},
            gated={"create_draft", "send_email"},
            consume_pass=True,
        )
        mail = mail_connection()
        results, _ = run_plan(
            handles_for(mail), config,
            make_plan(
                ("quality_check", {"content": "Hi"}),
                ("create_draft", {"content": "Hi"}),
                ("send_email", {"content": "Hi"}),
            ),
        )

        assert results[1].success
        assert results[2].error_kind == ErrorKind.POLICY_VIOLATION
        assert mail.calls["send_email"] == 0

    def test_plain_tools_ignore_gate(self, handles, policy_config, files):
        results, _ = run_plan(handles, policy_config, make_plan(("read_file", {"path": "a"})))
        assert results[0].success
        assert files.calls["read_file"] == 1


class TestPolicyConfig:
    """Loading and validating policy configuration."""

    def test_pass_predicate(self):
        config = PolicyConfig()
        assert config.passes("OK")
        assert config.passes("  ok - fine")
        assert not config.passes("REJECTED")
        assert not config.passes("NOT OK")
        assert not config.passes("OKAY")

    def test_classes_mapping(self, policy_config):
        classes = policy_config.classes
        assert classes["quality_check"].value == "validating"
        assert classes["send_email"].value == "gated"

    def test_overlap_rejected(self):
        with pytest.raises(ConfigError):
            PolicyConfig(validating={"x"}, gated={"x"})

    def test_bad_pattern_rejected(self):
        with pytest.raises(ConfigError):
            PolicyConfig(pass_pattern="(")

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text(textwrap.dedent("""
            validating: [quality_check]
            gated: [create_draft]
            pass_pattern: '^PASS'
            consume_pass: true
        """))

        config = PolicyConfig.load(str(path))

        assert config.validating == {"quality_check"}
        assert config.gated == {"create_draft"}
        assert config.consume_pass is True
        assert config.passes("pass")

    def test_missing_file_means_all_plain(self, tmp_path):
        config = PolicyConfig.load(str(tmp_path / "missing.yaml"))
        assert config.classes == {}

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("validating: [unclosed")
        with pytest.raises(ConfigError):
            PolicyConfig.load(str(path))

    def test_shipped_policy_file(self, project_root):
        config = PolicyConfig.load(str(project_root / "config" / "policy.yaml"))
        assert "quality_check" in config.validating
        assert {"create_draft", "send_email"} <= config.gated
