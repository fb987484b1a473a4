"""
CLI 테스트 (click CliRunner)
"""

import os
import pytest
import yaml
from click.testing import CliRunner
from tunnel_agent import cli as cli_module
from tunnel_agent.cli import cli
from tunnel_agent.models import ServiceState


def test_init_creates_sample():
    runner = CliRunner()
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["init", "agent.yaml"])
        assert result.exit_code == 0
        assert os.path.exists("agent.yaml")

        data = yaml.safe_load(open("agent.yaml"))
        assert data["cloudflare"]["tunnel_name"] == "home-server"
        assert data["maintenance"]["run_time"] == "03:00"


def test_init_refuses_to_overwrite():
    runner = CliRunner()
    with runner.isolated_filesystem():
        with open("agent.yaml", "w") as f:
            f.write("keep: me\n")

        result = runner.invoke(cli, ["init", "agent.yaml"])

        assert result.exit_code == 1
        assert open("agent.yaml").read() == "keep: me\n"


def test_validate_sample():
    runner = CliRunner()
    with runner.isolated_filesystem():
        runner.invoke(cli, ["init", "agent.yaml"])
        result = runner.invoke(cli, ["validate", "-c", "agent.yaml"])

        assert result.exit_code == 0
        assert "home-server" in result.output


def test_validate_rejects_bad_section():
    runner = CliRunner()
    with runner.isolated_filesystem():
        with open("agent.yaml", "w") as f:
            f.write("cloudflare:\n  - home-server\n")

        result = runner.invoke(cli, ["validate", "-c", "agent.yaml"])

        assert result.exit_code == 1


def test_validate_rejects_bad_retry():
    runner = CliRunner()
    with runner.isolated_filesystem():
        with open("agent.yaml", "w") as f:
            f.write("retry:\n  max_attempts: 0\n")

        result = runner.invoke(cli, ["validate", "-c", "agent.yaml"])

        assert result.exit_code == 1


def test_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "1.0.0" in result.output


class RecordingOrchestrator:
    """실제 실행 대신 전달된 파라미터만 기록"""

    instances = []

    def __init__(self, params, **kwargs):
        self.params = params
        self.kwargs = kwargs
        RecordingOrchestrator.instances.append(self)

    def run(self):
        return True


@pytest.fixture
def agent_config(tmp_path):
    path = tmp_path / "agent.yaml"
    path.write_text(
        "cloudflare:\n"
        "  tunnel_name: file-tunnel\n"
        "  domain: file.example.com\n"
        "tailscale:\n"
        "  auth_key: tskey-from-file\n"
        "agent:\n"
        f"  log_dir: {tmp_path / 'logs'}\n"
        f"  lock_file: {tmp_path / 'agent.lock'}\n"
        f"  backup_dir: {tmp_path / 'backups'}\n"
    )
    return str(path)


@pytest.fixture
def as_root(monkeypatch):
    monkeypatch.setattr(cli_module.os, "geteuid", lambda: 0)
    monkeypatch.delenv("TS_AUTHKEY", raising=False)
    RecordingOrchestrator.instances = []
    monkeypatch.setattr(cli_module, "CloudflareOrchestrator", RecordingOrchestrator)
    monkeypatch.setattr(cli_module, "TailscaleOrchestrator", RecordingOrchestrator)


@pytest.mark.parametrize("command", ["cloudflare", "tailscale"])
def test_provisioning_requires_root(command, agent_config, monkeypatch):
    monkeypatch.setattr(cli_module.os, "geteuid", lambda: 1000)

    result = CliRunner().invoke(cli, [command, "-c", agent_config])

    assert result.exit_code == 1
    assert "root" in result.output


def test_cloudflare_options_override_config(agent_config, as_root, tmp_path):
    result = CliRunner().invoke(cli, [
        "cloudflare", "-c", agent_config, "--name", "home-server", "--domain", "www.example.com",
    ])

    assert result.exit_code == 0
    orchestrator = RecordingOrchestrator.instances[-1]
    assert orchestrator.params.tunnel_name == "home-server"
    assert orchestrator.params.domain == "www.example.com"
    assert orchestrator.kwargs["lock_file"] == str(tmp_path / "agent.lock")
    assert orchestrator.kwargs["backup_dir"] == str(tmp_path / "backups")


def test_cloudflare_uses_config_values(agent_config, as_root):
    result = CliRunner().invoke(cli, ["cloudflare", "-c", agent_config])

    assert result.exit_code == 0
    params = RecordingOrchestrator.instances[-1].params
    assert (params.tunnel_name, params.domain) == ("file-tunnel", "file.example.com")


def test_auth_key_from_config_file(agent_config, as_root):
    result = CliRunner().invoke(cli, ["tailscale", "-c", agent_config])

    assert result.exit_code == 0
    assert RecordingOrchestrator.instances[-1].params.auth_key == "tskey-from-file"


def test_env_auth_key_beats_config_file(agent_config, as_root, monkeypatch):
    monkeypatch.setenv("TS_AUTHKEY", "tskey-from-env")

    result = CliRunner().invoke(cli, ["tailscale", "-c", agent_config])

    assert result.exit_code == 0
    assert RecordingOrchestrator.instances[-1].params.auth_key == "tskey-from-env"


def test_auth_key_option_beats_env(agent_config, as_root, monkeypatch):
    monkeypatch.setenv("TS_AUTHKEY", "tskey-from-env")

    result = CliRunner().invoke(cli, ["tailscale", "-c", agent_config, "--auth-key", "tskey-from-option"])

    assert result.exit_code == 0
    assert RecordingOrchestrator.instances[-1].params.auth_key == "tskey-from-option"


def test_tailscale_no_maintenance(agent_config, as_root):
    result = CliRunner().invoke(cli, ["tailscale", "-c", agent_config, "--no-maintenance"])

    assert result.exit_code == 0
    assert not RecordingOrchestrator.instances[-1].params.maintenance_enabled


def test_failed_run_exits_1(agent_config, as_root, monkeypatch):
    monkeypatch.setattr(RecordingOrchestrator, "run", lambda self: False)

    result = CliRunner().invoke(cli, ["tailscale", "-c", agent_config])

    assert result.exit_code == 1


@pytest.mark.parametrize("healthy, exit_code", [(True, 0), (False, 1)])
def test_maintain_exit_code(agent_config, monkeypatch, healthy, exit_code):
    calls = []

    class FakeMaintenance:
        def __init__(self, service, log_file, settle_seconds):
            calls.append((service, log_file, settle_seconds))

        def run(self):
            return {"healthy": healthy, "message": "tailscaled checked"}

    monkeypatch.setattr(cli_module, "MaintenanceRunner", FakeMaintenance)

    result = CliRunner().invoke(cli, ["maintain", "-c", agent_config, "-s", "tailscaled"])

    assert result.exit_code == exit_code
    assert calls == [("tailscaled", "/var/log/tailscale_maintenance.log", 3.0)]
    assert "tailscaled checked" in result.output


def test_status_table(agent_config, monkeypatch):
    class FakeSupervisor:
        def state(self, name):
            return ServiceState(name=name, enabled=True, active=name != "cloudflared")

    monkeypatch.setattr(cli_module, "ServiceSupervisor", FakeSupervisor)

    result = CliRunner().invoke(cli, ["status", "-c", agent_config])

    assert result.exit_code == 0
    for name in ("cloudflared", "tailscaled", "tailscale-maintenance.timer"):
        assert name in result.output
