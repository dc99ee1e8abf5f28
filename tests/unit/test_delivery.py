"""Unit tests for the readiness-gated delivery protocol."""

import pytest

from agentgrid.delivery import (
    DELIVERY_ATTEMPTS,
    AttemptResult,
    SUBMIT_REPEAT,
    DeliveryFailed,
    DeliveryProtocol,
    DeliveryState,
    DeliveryStatus,
    PaneNotReady,
    ProcessNotReady,
    build_directive,
    is_process_ready,
)
from agentgrid.roles import PaneAddress, Role
from agentgrid.tmux_adapter import TmuxError


@pytest.fixture
def payload(tmp_path):
    path = tmp_path / "po.md"
    path.write_text("You are the product owner.\n")
    return path


@pytest.fixture
def pane():
    return PaneAddress("team", "team", 0)


@pytest.fixture
def protocol(fake_adapter, registry, fast_timing):
    fake_adapter.add_session("team")
    return DeliveryProtocol(fake_adapter, registry, fast_timing)


class TestBuildDirective:
    """Test build_directive."""

    def test_cat_directive(self, payload):
        assert build_directive(payload) == f"cat {payload}"

    def test_quotes_path(self, tmp_path):
        path = tmp_path / "my role's file.md"
        path.write_text("x")
        assert build_directive(path) == f"cat '{tmp_path}/my role'\"'\"'s file.md'"

    def test_none_payload(self):
        assert build_directive(None) is None

    def test_missing_file(self, tmp_path):
        assert build_directive(tmp_path / "missing.md") is None

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.md"
        path.write_text("  \n")
        assert build_directive(path) is None

    def test_directory_is_not_a_payload(self, tmp_path):
        assert build_directive(tmp_path) is None


class TestIsProcessReady:
    """Test the readiness heuristic."""

    @pytest.mark.parametrize("text", ["claude", "> ", "user@host:~$", "a long line of startup output"])
    def test_ready(self, text):
        assert is_process_ready(text)

    @pytest.mark.parametrize("text", ["", "   \n", "loading"])
    def test_not_ready(self, text):
        assert not is_process_ready(text)


class TestSpawnAndDeliver:
    """Test spawn_and_deliver against the fake adapter."""

    def test_delivers_directive(self, protocol, fake_adapter, registry, pane, payload):
        outcome = protocol.spawn_and_deliver("team", Role.anchor1(), pane, "claude", payload)

        assert outcome.status == DeliveryStatus.DELIVERED
        assert outcome.state == DeliveryState.DONE
        assert outcome.success
        assert outcome.process_ready
        assert fake_adapter.pane(pane.target).keys == ["claude", f"cat {payload}"] + ["C-m"] * SUBMIT_REPEAT

    def test_registers_agent_pid_not_shell_pid(self, protocol, fake_adapter, registry, pane, payload):
        outcome = protocol.spawn_and_deliver("team", Role.anchor1(), pane, "claude", payload)

        record = registry.get_process_info("team", pane)
        fake_pane = fake_adapter.pane(pane.target)
        assert record is not None
        assert record.pid == fake_pane.agent_pid == outcome.pid
        assert record.pid != fake_pane.pid
        assert record.command == "claude"

    def test_missing_payload_is_skipped(self, protocol, fake_adapter, pane, tmp_path):
        outcome = protocol.spawn_and_deliver("team", Role.anchor1(), pane, "claude", tmp_path / "none.md")

        assert outcome.status == DeliveryStatus.SKIPPED
        assert outcome.success
        assert fake_adapter.pane(pane.target).keys == ["claude"]

    @staticmethod
    def fail_directives(fake_adapter, times):
        """Make the first ``times`` directive sends fail; launches always succeed."""
        original = fake_adapter.send_keys_with_submit
        remaining = [times]

        def send(target, text):
            if text.startswith("cat ") and remaining[0] > 0:
                remaining[0] -= 1
                raise TmuxError("send failed")
            original(target, text)

        fake_adapter.send_keys_with_submit = send

    def test_retry_then_success(self, protocol, fake_adapter, pane, payload):
        self.fail_directives(fake_adapter, times=2)

        outcome = protocol.spawn_and_deliver("team", Role.anchor1(), pane, "claude", payload)

        assert outcome.status == DeliveryStatus.DELIVERED
        assert [a.result for a in outcome.attempts] == [AttemptResult.FAILED, AttemptResult.FAILED, AttemptResult.SENT]
        assert {a.target for a in outcome.attempts} == {pane.target}
        assert fake_adapter.pane(pane.target).keys.count(f"cat {payload}") == 1

    def test_three_failures_raise_delivery_failed(self, protocol, fake_adapter, pane, payload):
        self.fail_directives(fake_adapter, times=3)

        with pytest.raises(DeliveryFailed) as exc_info:
            protocol.spawn_and_deliver("team", Role.anchor1(), pane, "claude", payload)

        assert exc_info.value.attempts == DELIVERY_ATTEMPTS == 3
        outcome = exc_info.value.outcome
        assert outcome.status == DeliveryStatus.FAILED
        assert outcome.state == DeliveryState.FAILED
        assert len(outcome.attempts) == 3

    def test_pane_never_appears(self, protocol, registry, payload):
        missing = PaneAddress("team", "team", 7)
        with pytest.raises(PaneNotReady, match="not ready"):
            protocol.spawn_and_deliver("team", Role.worker(5), missing, "claude", payload)
        assert len(registry) == 0

    def test_launch_failure_is_pane_not_ready(self, protocol, fake_adapter, pane, payload):
        fake_adapter.fail("send_keys_with_submit")
        with pytest.raises(PaneNotReady, match="Failed to start"):
            protocol.spawn_and_deliver("team", Role.anchor1(), pane, "claude", payload)

    def test_process_not_ready_is_only_a_warning(self, protocol, fake_adapter, pane, payload):
        fake_adapter.ready_text = ""

        outcome = protocol.spawn_and_deliver("team", Role.anchor1(), pane, "claude", payload)

        assert outcome.status == DeliveryStatus.DELIVERED
        assert any("not ready" in w for w in outcome.warnings)
        assert not outcome.process_ready

    def test_confirm_failures_are_only_warnings(self, protocol, fake_adapter, pane, payload):
        fake_adapter.fail("send_keys", times=None)

        outcome = protocol.spawn_and_deliver("team", Role.anchor1(), pane, "claude", payload)

        assert outcome.status == DeliveryStatus.DELIVERED
        assert len([w for w in outcome.warnings if w.startswith("confirm")]) == SUBMIT_REPEAT

    def test_pid_failure_leaves_process_untracked(self, protocol, fake_adapter, registry, pane, payload):
        fake_adapter.fail("get_agent_pid")

        outcome = protocol.spawn_and_deliver("team", Role.anchor1(), pane, "claude", payload)

        assert outcome.success
        assert outcome.pid is None
        assert len(registry) == 0

    def test_agent_that_never_starts_is_untracked(self, protocol, fake_adapter, registry, pane, payload):
        fake_adapter.get_agent_pid = lambda target: None

        outcome = protocol.spawn_and_deliver("team", Role.anchor1(), pane, "claude", payload)

        assert outcome.success
        assert outcome.pid is None
        assert "process not tracked: no agent process found" in outcome.warnings
        assert len(registry) == 0


class TestWaitForReadiness:
    """Test the polling helpers directly."""

    def test_wait_for_pane_ready_tolerates_listing_errors(self, protocol, fake_adapter, pane):
        fake_adapter.fail("list_regions", times=2)
        protocol.wait_for_pane_ready("team", pane)
        assert len(fake_adapter.calls_of("list_regions")) == 3

    def test_wait_for_process_ready_times_out(self, protocol, pane):
        with pytest.raises(ProcessNotReady):
            protocol.wait_for_process_ready(pane)

    def test_wait_for_agent_pid_polls_until_child_appears(self, protocol, fake_adapter, pane):
        answers = iter([None, None, 4_195_500])
        fake_adapter.get_agent_pid = lambda target: next(answers)

        assert protocol.wait_for_agent_pid(pane) == 4_195_500

    def test_wait_for_agent_pid_gives_up(self, protocol, pane):
        assert protocol.wait_for_agent_pid(pane) is None
