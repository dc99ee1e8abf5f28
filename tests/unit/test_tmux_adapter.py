"""Unit tests for TmuxAdapter with subprocess mocked out."""

import subprocess
from unittest.mock import Mock, patch

import pytest

from agentgrid.tmux_adapter import SplitDirection, TerminalAdapter, TmuxAdapter, TmuxError


def completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> Mock:
    return Mock(stdout=stdout, returncode=returncode, stderr=stderr)


class TestTmuxAdapter:
    """Test tmux command construction and error mapping."""

    @pytest.fixture
    def adapter(self):
        return TmuxAdapter(timeout=5)

    @pytest.fixture
    def mock_run(self):
        with patch("agentgrid.tmux_adapter.subprocess.run") as mock:
            mock.return_value = completed()
            yield mock

    def test_satisfies_protocol(self, adapter):
        assert isinstance(adapter, TerminalAdapter)

    def test_run_passes_timeout_and_no_shell(self, adapter, mock_run):
        adapter.rename_window("team", "team")

        args, kwargs = mock_run.call_args
        assert args[0] == ["tmux", "rename-window", "-t", "team", "team"]
        assert kwargs["timeout"] == 5
        assert "shell" not in kwargs

    def test_non_zero_exit_raises(self, adapter, mock_run):
        mock_run.return_value = completed(returncode=1, stderr="can't find pane")

        with pytest.raises(TmuxError, match="can't find pane") as exc_info:
            adapter.send_keys("team:team.9", "C-m")
        assert exc_info.value.stderr == "can't find pane"
        assert exc_info.value.command[:2] == ["tmux", "send-keys"]

    def test_timeout_raises(self, adapter, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="tmux", timeout=5)
        with pytest.raises(TmuxError, match="timed out"):
            adapter.list_regions("team")

    def test_missing_binary_raises(self, adapter, mock_run):
        mock_run.side_effect = FileNotFoundError()
        with pytest.raises(TmuxError, match="tmux not found"):
            adapter.create_session("team")

    def test_session_exists_uses_exact_match(self, adapter, mock_run):
        mock_run.return_value = completed(returncode=1)
        assert adapter.session_exists("team") is False
        assert mock_run.call_args[0][0] == ["tmux", "has-session", "-t", "=team"]

    def test_list_sessions_no_server(self, adapter, mock_run):
        mock_run.return_value = completed(returncode=1, stderr="no server running on /tmp/tmux-0/default")
        assert adapter.list_sessions() == []

    def test_list_sessions_other_failure_raises(self, adapter, mock_run):
        mock_run.return_value = completed(returncode=1, stderr="permission denied")
        with pytest.raises(TmuxError):
            adapter.list_sessions()

    def test_list_sessions_counts_panes(self, adapter, mock_run):
        mock_run.side_effect = [
            completed("team\nweb\n"),
            completed("0\tPO\n1\tManager\n2\tWorker1\n"),
            completed("0\t\n"),
        ]
        assert adapter.list_sessions() == [("team", 3), ("web", 1)]

    def test_create_existing_session_raises(self, adapter, mock_run):
        with pytest.raises(TmuxError, match="already exists"):
            adapter.create_session("team")

    def test_kill_missing_session_is_noop(self, adapter, mock_run):
        mock_run.return_value = completed(returncode=1)
        adapter.kill_session("ghost")
        assert mock_run.call_count == 1

    def test_split_region(self, adapter, mock_run):
        adapter.split_region("team:team.0", SplitDirection.VERTICAL)
        assert mock_run.call_args[0][0] == ["tmux", "split-window", "-v", "-t", "team:team.0"]

    def test_resize_region_width_and_height(self, adapter, mock_run):
        adapter.resize_region("team:team.0", width=60, height=20)
        assert mock_run.call_args[0][0] == ["tmux", "resize-pane", "-t", "team:team.0", "-x", "60", "-y", "20"]

    def test_resize_region_requires_dimension(self, adapter, mock_run):
        with pytest.raises(ValueError):
            adapter.resize_region("team:team.0")

    def test_list_regions_parses_titles(self, adapter, mock_run):
        mock_run.return_value = completed("1\tPO\n2\tWorker 1\n\n")
        assert adapter.list_regions("team") == [(1, "PO"), (2, "Worker 1")]

    def test_send_keys_with_submit(self, adapter, mock_run):
        adapter.send_keys_with_submit("team:team.2", "cat /tmp/po.md")
        assert [c[0][0] for c in mock_run.call_args_list] == [
            ["tmux", "send-keys", "-l", "-t", "team:team.2", "cat /tmp/po.md"],
            ["tmux", "send-keys", "-t", "team:team.2", "C-m"],
        ]

    @pytest.mark.parametrize("text", ["Enter", "Up", "C-c"])
    def test_send_text_types_key_names_literally(self, adapter, mock_run, text):
        adapter.send_text("team:team.2", text)
        assert mock_run.call_args[0][0] == ["tmux", "send-keys", "-l", "-t", "team:team.2", text]

    def test_get_window_size(self, adapter, mock_run):
        mock_run.return_value = completed("200\t50\n")
        assert adapter.get_window_size("team") == (200, 50)

    def test_get_window_size_garbage(self, adapter, mock_run):
        mock_run.return_value = completed("oops\n")
        with pytest.raises(TmuxError, match="Unexpected window size"):
            adapter.get_window_size("team")

    def test_get_region_pid(self, adapter, mock_run):
        mock_run.return_value = completed("4242\n")
        assert adapter.get_region_pid("team:team.0") == 4242

    def test_get_agent_pid_finds_shell_child(self, adapter, mock_run):
        mock_run.side_effect = [completed("4242\n"), completed("4250\n")]

        assert adapter.get_agent_pid("team:team.0") == 4250
        assert mock_run.call_args[0][0] == ["pgrep", "-n", "-P", "4242"]

    def test_get_agent_pid_no_child(self, adapter, mock_run):
        mock_run.side_effect = [completed("4242\n"), completed(returncode=1)]
        assert adapter.get_agent_pid("team:team.0") is None

    def test_get_agent_pid_pgrep_error(self, adapter, mock_run):
        mock_run.side_effect = [completed("4242\n"), completed(returncode=2, stderr="bad option")]
        with pytest.raises(TmuxError, match="pgrep failed"):
            adapter.get_agent_pid("team:team.0")

    def test_get_agent_pid_missing_pgrep(self, adapter, mock_run):
        mock_run.side_effect = [completed("4242\n"), FileNotFoundError()]
        with pytest.raises(TmuxError, match="pgrep not found"):
            adapter.get_agent_pid("team:team.0")
