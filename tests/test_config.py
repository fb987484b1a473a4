"""
설정 관리 모듈 테스트
"""

import os
import shlex
import sys
import tempfile
import pytest
from tunnel_agent.config import Config
from tunnel_agent.models import CloudflareRunParameters


def test_default_config(tmp_path, monkeypatch):
    """기본 설정 테스트"""
    monkeypatch.chdir(tmp_path)
    config = Config()
    assert config.cloudflare.binary_path == "/usr/local/bin/cloudflared"
    assert config.cloudflare.origin_service == "http://localhost:80"
    assert config.maintenance.run_time == "03:00"
    assert config.retry.max_attempts == 3
    assert config.agent.backup == True


def test_config_load_yaml():
    """YAML 설정 파일 로드 테스트"""
    yaml_content = """
cloudflare:
  tunnel_name: "home-server"
  domain: "www.example.com"

maintenance:
  enabled: false
  run-time: "04:30"

unknown_section:
  foo: bar
"""

    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        f.write(yaml_content)
        temp_path = f.name

    try:
        config = Config(temp_path)
        assert config.cloudflare.tunnel_name == "home-server"
        assert config.cloudflare.domain == "www.example.com"
        assert config.maintenance.enabled == False
        assert config.maintenance.run_time == "04:30"
        assert config.config_path == temp_path
    finally:
        os.unlink(temp_path)


def test_config_rejects_non_mapping_section(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("retry: 5\n")

    with pytest.raises(ValueError):
        Config(str(path))


def test_config_save(tmp_path):
    """설정 저장 후 다시 로드"""
    config = Config(str(tmp_path / "missing.yaml"))
    config.cloudflare.domain = "tunnel.example.org"
    config.retry.delay = 0.5

    path = tmp_path / "saved.yaml"
    config.save(str(path))

    config2 = Config(str(path))
    assert config2.cloudflare.domain == "tunnel.example.org"
    assert config2.retry.delay == 0.5


def test_config_save_json(tmp_path):
    config = Config(str(tmp_path / "missing.yaml"))
    config.tailscale.accept_routes = False

    path = tmp_path / "saved.json"
    config.save(str(path))

    assert Config(str(path)).tailscale.accept_routes == False


def test_config_to_dict(tmp_path):
    """딕셔너리 변환 테스트"""
    config = Config(str(tmp_path / "missing.yaml"))
    data = config.to_dict()

    assert set(data) == {"cloudflare", "tailscale", "maintenance", "logrotate", "retry", "agent"}
    assert data["agent"]["lock_file"] == "/run/tunnel-agent.lock"


def test_apply_env_reads_auth_key(tmp_path):
    config = Config(str(tmp_path / "missing.yaml"))
    config.apply_env({"TS_AUTHKEY": "tskey-auth-abc123"})
    assert config.tailscale.auth_key == "tskey-auth-abc123"

    config.apply_env({})
    assert config.tailscale.auth_key == "tskey-auth-abc123"


def test_cloudflare_params_prefer_cli_values(tmp_path):
    config = Config(str(tmp_path / "missing.yaml"))
    config.cloudflare.tunnel_name = "from-file"
    config.cloudflare.domain = "file.example.com"

    params = config.to_cloudflare_params(" home-server ", None)

    assert isinstance(params, CloudflareRunParameters)
    assert params.tunnel_name == "home-server"
    assert params.domain == "file.example.com"
    assert params.config_path == "/root/.cloudflared/config.yml"
    assert params.packages == ("curl", "wget")


def test_tailscale_params(tmp_path):
    config = Config(str(tmp_path / "missing.yaml"))
    config.agent.log_dir = "/var/log/custom/"
    config.tailscale.auth_key = "from-file"

    params = config.to_tailscale_params("from-cli")

    assert params.auth_key == "from-cli"
    assert params.install_log_glob == "/var/log/custom/*.log"
    assert "from-cli" not in repr(params)


def test_retry_policy_validation(tmp_path):
    config = Config(str(tmp_path / "missing.yaml"))
    config.retry.max_attempts = 0

    with pytest.raises(ValueError):
        config.retry_policy()


def test_create_sample_is_loadable(tmp_path):
    """샘플 설정 파일이 그대로 로드되는지"""
    path = tmp_path / "conf" / "config.yaml"
    Config(str(tmp_path / "missing.yaml")).create_sample(str(path))

    config = Config(str(path))
    assert config.cloudflare.tunnel_name == "home-server"
    assert config.cloudflare.domain == "www.example.com"
    assert config.maintenance.exec_start == ""


def test_maintain_command_uses_running_interpreter(tmp_path):
    """타이머 명령은 현재 설치된 패키지를 가리키고 사용한 설정 파일을 넘긴다"""
    path = tmp_path / "agent.yaml"
    path.write_text("maintenance:\n  log_file: /srv/log/maintenance.log\n")

    params = Config(str(path)).to_tailscale_params()
    argv = shlex.split(params.maintenance_exec_start)

    assert argv[0] == sys.executable
    assert os.path.isfile(argv[0])
    assert argv[1:6] == ["-m", "tunnel_agent.cli", "maintain", "--service", "tailscaled"]
    assert argv[6:] == ["--config", str(path)]


def test_maintain_command_without_config_file(tmp_path):
    params = Config(str(tmp_path / "missing.yaml")).to_tailscale_params()
    assert "--config" not in shlex.split(params.maintenance_exec_start)


def test_explicit_maintain_command_is_kept(tmp_path):
    path = tmp_path / "agent.yaml"
    path.write_text('maintenance:\n  exec_start: "/opt/agent/bin/tunnel-agent maintain"\n')

    params = Config(str(path)).to_tailscale_params()
    assert params.maintenance_exec_start == "/opt/agent/bin/tunnel-agent maintain"
