"""
Tests for the privilege lease and decision sources.
"""

import pytest

from devsetup.adapters.base import CommandResult
from devsetup.adapters.mock import MockRunner
from devsetup.core.engine.decisions import PresetDecisions, ScriptedDecisions
from devsetup.core.engine.privilege import REMEDIATION_HINT, PrivilegeLease
from devsetup.core.errors import PrivilegeAcquisitionError


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestPrivilegeLease:
    def test_cached_credentials(self):
        runner = MockRunner(installed={"sudo"})
        lease = PrivilegeLease(runner, clock=FakeClock())
        lease.acquire()
        assert lease.acquired
        assert runner.command_lines == [["sudo", "-n", "true"]]

    def test_prompts_when_not_cached(self):
        runner = MockRunner(installed={"sudo"})
        runner.set_failure("sudo -n")
        lease = PrivilegeLease(runner, clock=FakeClock())
        lease.acquire()
        assert lease.acquired
        prompt = runner.call_log[-1]
        assert [prompt["command"], *prompt["args"]] == ["sudo", "-v"]
        assert prompt["interactive"] is True

    def test_refused(self):
        runner = MockRunner()
        runner.set_failure("sudo", stderr="user is not in the sudoers file")
        lease = PrivilegeLease(runner, clock=FakeClock())
        with pytest.raises(PrivilegeAcquisitionError) as exc:
            lease.acquire()
        assert exc.value.hint == REMEDIATION_HINT
        assert not lease.acquired

    def test_recent_lease_not_refreshed(self):
        clock = FakeClock()
        runner = MockRunner(installed={"sudo"})
        lease = PrivilegeLease(runner, clock=clock, refresh_after=240)
        lease.acquire()
        clock.now += 60
        lease.refresh()
        assert runner.call_count == 1
        assert lease.age == 60

    def test_stale_lease_refreshed(self):
        clock = FakeClock()
        runner = MockRunner(installed={"sudo"})
        lease = PrivilegeLease(runner, clock=clock, refresh_after=240)
        lease.acquire()
        clock.now += 300
        lease.refresh()
        assert runner.call_count == 2
        assert lease.age == 0

    def test_forced_refresh(self):
        runner = MockRunner(installed={"sudo"})
        lease = PrivilegeLease(runner, clock=FakeClock())
        lease.acquire()
        lease.refresh(force=True)
        assert runner.call_count == 2

    def test_expired_during_run(self):
        clock = FakeClock()
        runner = MockRunner(installed={"sudo"})
        answers = iter([0, 1, 1])
        runner.set_response("sudo", lambda cmd: CommandResult(command=cmd, exit_code=next(answers)))
        lease = PrivilegeLease(runner, clock=clock)
        lease.acquire()
        clock.now += 600
        with pytest.raises(PrivilegeAcquisitionError, match="refresh"):
            lease.refresh()


class TestDecisions:
    def test_preset(self):
        decisions = PresetDecisions(True)
        assert decisions.confirm("Continue?") is True
        assert decisions.asked == ["Continue?"]

    def test_scripted_by_substring(self):
        decisions = ScriptedDecisions({"Overwrite": False, "WSL": True}, default=True)
        assert decisions.confirm("Overwrite existing .env?") is False
        assert decisions.confirm("This setup is optimized for WSL Ubuntu. Continue anyway?") is True
        assert decisions.confirm("Something else?") is True
        assert len(decisions.asked) == 3
