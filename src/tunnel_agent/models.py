"""
데이터 모델
관리 대상 아티팩트, 조정 결과, 서비스 상태, 원격 리소스, 실행 파라미터
"""

import os
import shlex
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


def default_maintain_command(service: str, config_path: Optional[str] = None) -> str:
    """타이머가 실행할 `maintain` 명령

    지금 실행 중인 인터프리터로 `-m tunnel_agent.cli` 를 호출하므로 venv, pipx
    등 설치 위치와 상관없이 같은 패키지를 실행한다.
    """
    argv = [sys.executable, "-m", "tunnel_agent.cli", "maintain", "--service", service]
    if config_path:
        argv += ["--config", os.path.abspath(config_path)]
    return " ".join(shlex.quote(arg) for arg in argv)


class _Absent:
    """프로브 결과: 아티팩트가 존재하지 않음"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "ABSENT"

    def __bool__(self):
        return False


class _NotFound:
    """원격 조회 결과: 이름과 일치하는 리소스 없음"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "NOT_FOUND"

    def __bool__(self):
        return False


ABSENT = _Absent()
NOT_FOUND = _NotFound()


class ArtifactKind(Enum):
    BINARY = "binary"
    CONFIG_FILE = "config-file"
    UNIT_FILE = "unit-file"
    TIMER = "timer"


@dataclass
class ManagedArtifact:
    """관리 대상 아티팩트 (desired 는 비교 전에 항상 완전히 계산되어 있어야 함)"""
    path: str
    kind: ArtifactKind
    desired: bytes = b""
    mode: Optional[int] = None

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]


class ReconcileStatus(Enum):
    UNCHANGED = "unchanged"
    UPDATED = "updated"
    CREATED = "created"


@dataclass
class ReconcileResult:
    """조정 결과"""
    path: str
    status: ReconcileStatus
    backup_path: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.status is not ReconcileStatus.UNCHANGED


@dataclass
class ServiceState:
    """systemd 서비스 상태 (ServiceSupervisor 를 통해서만 생성됨)"""
    name: str
    enabled: bool = False
    active: bool = False


@dataclass(frozen=True)
class RemoteResource:
    """원격 리소스 (예: Cloudflare 터널)"""
    id: str
    name: str


class StageStatus(Enum):
    OK = "ok"
    CHANGED = "changed"
    SKIPPED = "skipped"
    WARNING = "warning"
    FAILED = "failed"


@dataclass
class StageOutcome:
    """오케스트레이터 단계 실행 결과"""
    stage: str
    status: StageStatus
    message: str = ""


@dataclass(frozen=True)
class CloudflareRunParameters:
    """Cloudflare Tunnel 실행 파라미터"""
    tunnel_name: str
    domain: str
    origin_service: str = "http://localhost:80"
    binary_path: str = "/usr/local/bin/cloudflared"
    download_url: str = (
        "https://github.com/cloudflare/cloudflared/releases/latest/download/cloudflared-linux-amd64"
    )
    credentials_dir: str = "/root/.cloudflared"
    unit_path: str = "/etc/systemd/system/cloudflared.service"
    service_name: str = "cloudflared"
    packages: Tuple[str, ...] = ("curl", "wget")

    @property
    def config_path(self) -> str:
        return f"{self.credentials_dir.rstrip('/')}/config.yml"

    @property
    def cert_path(self) -> str:
        return f"{self.credentials_dir.rstrip('/')}/cert.pem"


@dataclass(frozen=True)
class TailscaleRunParameters:
    """Tailscale 실행 파라미터"""
    auth_key: str = field(default="", repr=False)
    accept_routes: bool = True
    service_name: str = "tailscaled"
    package_base_url: str = "https://pkgs.tailscale.com/stable"
    keyring_path: str = "/usr/share/keyrings/tailscale-archive-keyring.gpg"
    source_list_path: str = "/etc/apt/sources.list.d/tailscale.list"
    dropin_path: str = "/etc/systemd/system/tailscaled.service.d/override.conf"
    restart_sec: str = "5s"
    packages: Tuple[str, ...] = ("curl", "ca-certificates", "gnupg", "lsb-release")
    os_release_path: str = "/etc/os-release"
    maintenance_enabled: bool = True
    maintenance_unit: str = "tailscale-maintenance"
    maintenance_service_path: str = "/etc/systemd/system/tailscale-maintenance.service"
    maintenance_timer_path: str = "/etc/systemd/system/tailscale-maintenance.timer"
    maintenance_exec_start: str = field(default_factory=lambda: default_maintain_command("tailscaled"))
    maintenance_log: str = "/var/log/tailscale_maintenance.log"
    run_time: str = "03:00"
    settle_seconds: float = 3.0
    logrotate_enabled: bool = True
    logrotate_path: str = "/etc/logrotate.d/tailscale-maintenance"
    install_log_glob: str = "/var/log/tunnel-agent/*.log"
