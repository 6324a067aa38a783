import pytest

from slackduty import cli


class RecordingOrchestrator:
    instances = []

    def __init__(self, settings, *, external_trigger=False, **kwargs):
        self.settings = settings
        self.external_trigger = external_trigger
        self.run_calls = []
        RecordingOrchestrator.instances.append(self)

    def run(self, cancel=None, groups=None):
        self.run_calls.append((cancel, groups))


@pytest.fixture
def recording_orchestrator(monkeypatch):
    RecordingOrchestrator.instances = []
    monkeypatch.setattr(cli, "Orchestrator", RecordingOrchestrator)
    return RecordingOrchestrator


# validate-config ---------------------------------------------------------------


def test_validate_config_ok(write_min_config, capsys):
    assert cli.main(["validate-config"]) == 0
    assert "OK" in capsys.readouterr().out


def test_validate_config_recurring_fails_without_schedule(write_min_config, capsys):
    assert cli.main(["--config", str(write_min_config), "validate-config", "--recurring"]) == 1
    assert "checkout" in capsys.readouterr().err


def test_validate_config_missing_file(tmp_path, capsys):
    assert cli.main(["--config", str(tmp_path / "missing.yml"), "validate-config"]) == 1


# list-groups -------------------------------------------------------------------


def test_list_groups_prints_table(write_min_config, capsys):
    assert cli.main(["list-groups"]) == 0
    out = capsys.readouterr().out
    assert "backend on-call" in out
    assert "*/5 * * * *" in out
    assert "(external)" in out
    assert "handle:backend-oncall" in out


# run ---------------------------------------------------------------------------


def test_run_requires_api_keys(write_min_config, recording_orchestrator, capsys):
    assert cli.main(["run"]) == 1
    assert "SLACKDUTY_PAGERDUTY_API_KEY" in capsys.readouterr().err
    assert recording_orchestrator.instances == []


def test_run_all_groups_oneshot(write_min_config, api_keys_env, recording_orchestrator):
    assert cli.main(["run"]) == 0
    (orch,) = recording_orchestrator.instances
    assert orch.external_trigger is True
    assert orch.settings.pagerduty_api_key == "pd-test-key"
    assert orch.settings.slack_api_key == "xoxb-test"
    _, groups = orch.run_calls[0]
    assert [g.name for g in groups] == ["backend on-call", "checkout"]


def test_run_selected_group(write_min_config, api_keys_env, recording_orchestrator):
    assert cli.main(["run", "--group", "checkout"]) == 0
    _, groups = recording_orchestrator.instances[0].run_calls[0]
    assert [g.name for g in groups] == ["checkout"]


def test_run_unknown_group(write_min_config, api_keys_env, recording_orchestrator, capsys):
    assert cli.main(["run", "--group", "nope"]) == 1
    assert "nope" in capsys.readouterr().err


# serve -------------------------------------------------------------------------


def test_serve_rejects_group_without_schedule(write_min_config, api_keys_env, recording_orchestrator):
    assert cli.main(["serve"]) == 1
    assert recording_orchestrator.instances == []


def test_serve_runs_recurring(tmp_path, api_keys_env, recording_orchestrator, monkeypatch):
    monkeypatch.setattr(cli.signal, "signal", lambda *a, **k: None)
    p = tmp_path / "c.yml"
    p.write_text(
        "groups:\n"
        "  - name: g\n"
        "    schedule: '@hourly'\n"
        "    usergroups: [id:S1]\n"
        "    members: {slack: [id:U1]}\n",
        encoding="utf-8",
    )
    assert cli.main(["--config", str(p), "serve"]) == 0
    (orch,) = recording_orchestrator.instances
    assert orch.external_trigger is False
    cancel, _ = orch.run_calls[0]
    assert cancel is not None and not cancel.is_set()
