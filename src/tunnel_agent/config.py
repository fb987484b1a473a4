"""
설정 관리 모듈
YAML/JSON 기반 설정 파일 관리 및 기본값 제공
"""

import os
import yaml
import json
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, asdict, fields
from .models import CloudflareRunParameters, TailscaleRunParameters, default_maintain_command
from .retry import RetryPolicy

AUTH_KEY_ENV = "TS_AUTHKEY"


@dataclass
class CloudflareConfig:
    """Cloudflare Tunnel 설정"""
    tunnel_name: str = ""
    domain: str = ""
    origin_service: str = "http://localhost:80"
    binary_path: str = "/usr/local/bin/cloudflared"
    download_url: str = "https://github.com/cloudflare/cloudflared/releases/latest/download/cloudflared-linux-amd64"
    credentials_dir: str = "/root/.cloudflared"
    unit_path: str = "/etc/systemd/system/cloudflared.service"
    service_name: str = "cloudflared"
    packages: list = field(default_factory=lambda: ["curl", "wget"])


@dataclass
class TailscaleConfig:
    """Tailscale 설정"""
    auth_key: str = ""
    accept_routes: bool = True
    service_name: str = "tailscaled"
    package_base_url: str = "https://pkgs.tailscale.com/stable"
    keyring_path: str = "/usr/share/keyrings/tailscale-archive-keyring.gpg"
    source_list_path: str = "/etc/apt/sources.list.d/tailscale.list"
    dropin_path: str = "/etc/systemd/system/tailscaled.service.d/override.conf"
    restart_sec: str = "5s"
    packages: list = field(default_factory=lambda: ["curl", "ca-certificates", "gnupg", "lsb-release"])


@dataclass
class MaintenanceConfig:
    """일일 유지보수 타이머 설정"""
    enabled: bool = True
    run_time: str = "03:00"
    unit_name: str = "tailscale-maintenance"
    service_path: str = "/etc/systemd/system/tailscale-maintenance.service"
    timer_path: str = "/etc/systemd/system/tailscale-maintenance.timer"
    exec_start: str = ""  # 비어 있으면 현재 설치 위치로 생성
    log_file: str = "/var/log/tailscale_maintenance.log"
    settle_seconds: float = 3.0


@dataclass
class LogrotateConfig:
    """로그 로테이션 설정"""
    enabled: bool = True
    path: str = "/etc/logrotate.d/tailscale-maintenance"


@dataclass
class RetryConfig:
    """네트워크 작업 재시도 설정"""
    max_attempts: int = 3
    delay: float = 2.0


@dataclass
class AgentConfig:
    """에이전트 설정"""
    log_dir: str = "/var/log/tunnel-agent"
    log_level: str = "INFO"
    lock_file: str = "/run/tunnel-agent.lock"
    backup: bool = True
    backup_dir: str = "/var/backups/tunnel-agent"


class Config:
    """전체 설정 관리 클래스"""

    DEFAULT_CONFIG_PATHS = [
        "/etc/tunnel-agent/config.yaml",
        "~/.tunnel-agent/config.yaml",
        "./config/config.yaml",
        "./config.yaml",
    ]

    SECTIONS = ("cloudflare", "tailscale", "maintenance", "logrotate", "retry", "agent")

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.cloudflare = CloudflareConfig()
        self.tailscale = TailscaleConfig()
        self.maintenance = MaintenanceConfig()
        self.logrotate = LogrotateConfig()
        self.retry = RetryConfig()
        self.agent = AgentConfig()

        if config_path:
            self.load(config_path)
        else:
            self._load_from_default_paths()

    def _load_from_default_paths(self):
        """기본 경로에서 설정 파일 로드"""
        for path in self.DEFAULT_CONFIG_PATHS:
            expanded_path = os.path.expanduser(path)
            if os.path.exists(expanded_path):
                self.load(expanded_path)
                return

    def load(self, path: str):
        """설정 파일 로드"""
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            return

        with open(path, 'r', encoding='utf-8') as f:
            if path.endswith('.json'):
                data = json.load(f)
            else:
                data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"{path}: top level must be a mapping")

        self._update_from_dict(data)
        self.config_path = path

    def _update_from_dict(self, data: Dict[str, Any]):
        """딕셔너리에서 설정 업데이트 (알 수 없는 키는 무시)"""
        for section_name in self.SECTIONS:
            values = data.get(section_name)
            if not values:
                continue
            if not isinstance(values, dict):
                raise ValueError(f"section '{section_name}' must be a mapping")

            section = getattr(self, section_name)
            known = {f.name for f in fields(section)}
            for key, value in values.items():
                key = key.replace("-", "_")
                if key in known:
                    setattr(section, key, value)

    def apply_env(self, environ: Optional[Dict[str, str]] = None):
        """환경 변수 반영 (시작 시 한 번만 호출)"""
        environ = os.environ if environ is None else environ
        auth_key = environ.get(AUTH_KEY_ENV, "")
        if auth_key:
            self.tailscale.auth_key = auth_key

    def save(self, path: Optional[str] = None):
        """설정 파일 저장"""
        save_path = path or self.config_path or self.DEFAULT_CONFIG_PATHS[0]
        save_path = os.path.expanduser(save_path)

        os.makedirs(os.path.dirname(save_path) or ".", exist_ok=True)

        data = self.to_dict()
        with open(save_path, 'w', encoding='utf-8') as f:
            if save_path.endswith('.json'):
                json.dump(data, f, indent=2)
            else:
                yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        return {name: asdict(getattr(self, name)) for name in self.SECTIONS}

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=int(self.retry.max_attempts), delay=float(self.retry.delay))

    def to_cloudflare_params(self, tunnel_name: Optional[str] = None,
                             domain: Optional[str] = None) -> CloudflareRunParameters:
        """실행 파라미터 생성 (CLI 입력이 설정 파일보다 우선)"""
        cf = self.cloudflare
        return CloudflareRunParameters(
            tunnel_name=(tunnel_name if tunnel_name is not None else cf.tunnel_name).strip(),
            domain=(domain if domain is not None else cf.domain).strip(),
            origin_service=cf.origin_service,
            binary_path=cf.binary_path,
            download_url=cf.download_url,
            credentials_dir=cf.credentials_dir,
            unit_path=cf.unit_path,
            service_name=cf.service_name,
            packages=tuple(cf.packages),
        )

    def to_tailscale_params(self, auth_key: Optional[str] = None) -> TailscaleRunParameters:
        ts = self.tailscale
        mt = self.maintenance
        # 설정 파일에서 로드한 경우 타이머의 maintain 도 같은 파일을 읽는다
        loaded_from = self.config_path if self.config_path and os.path.isfile(self.config_path) else None
        return TailscaleRunParameters(
            auth_key=auth_key if auth_key is not None else ts.auth_key,
            accept_routes=bool(ts.accept_routes),
            service_name=ts.service_name,
            package_base_url=ts.package_base_url,
            keyring_path=ts.keyring_path,
            source_list_path=ts.source_list_path,
            dropin_path=ts.dropin_path,
            restart_sec=str(ts.restart_sec),
            packages=tuple(ts.packages),
            maintenance_enabled=bool(mt.enabled),
            maintenance_unit=mt.unit_name,
            maintenance_service_path=mt.service_path,
            maintenance_timer_path=mt.timer_path,
            maintenance_exec_start=mt.exec_start or default_maintain_command(ts.service_name, loaded_from),
            maintenance_log=mt.log_file,
            run_time=str(mt.run_time),
            settle_seconds=float(mt.settle_seconds),
            logrotate_enabled=bool(self.logrotate.enabled),
            logrotate_path=self.logrotate.path,
            install_log_glob=f"{self.agent.log_dir.rstrip('/')}/*.log",
        )

    def create_sample(self, output_path: str):
        """샘플 설정 파일 생성"""
        template = """# Tunnel Agent Configuration File
# 이 파일을 복사하여 config.yaml로 사용하세요

# Cloudflare Tunnel 설정
cloudflare:
  tunnel_name: "home-server"  # 비워두면 실행 시 입력받음
  domain: "www.example.com"  # 터널에 바인딩할 도메인
  origin_service: "http://localhost:80"
  binary_path: "/usr/local/bin/cloudflared"
  credentials_dir: "/root/.cloudflared"
  unit_path: "/etc/systemd/system/cloudflared.service"
  service_name: "cloudflared"

# Tailscale 설정
tailscale:
  auth_key: ""  # 비워두면 TS_AUTHKEY 환경 변수 또는 브라우저 로그인 사용
  accept_routes: true
  service_name: "tailscaled"
  restart_sec: "5s"  # 비정상 종료 후 재시작 대기 시간

# 일일 유지보수 타이머
maintenance:
  enabled: true
  run_time: "03:00"  # 로컬 시간 (HH:MM)
  exec_start: ""  # 비워두면 현재 설치된 tunnel-agent 로 자동 생성 (--config 포함)
  log_file: "/var/log/tailscale_maintenance.log"

# 로그 로테이션
logrotate:
  enabled: true
  path: "/etc/logrotate.d/tailscale-maintenance"

# 네트워크 작업 재시도
retry:
  max_attempts: 3
  delay: 2

# 에이전트 설정
agent:
  log_dir: "/var/log/tunnel-agent"
  log_level: "INFO"  # DEBUG, INFO, WARNING, ERROR
  lock_file: "/run/tunnel-agent.lock"
  backup: true  # 덮어쓰기 전 <파일>.<epoch>.bak 백업
  backup_dir: "/var/backups/tunnel-agent"  # 백업은 원본 경로 구조 그대로 이 아래에 저장
"""

        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(template)
