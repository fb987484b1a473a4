"""
오케스트레이터
설치 → 인증 → 원격 리소스 → 설정 조정 → 서비스 수렴 순서로 단계를 실행한다.
언제 다시 실행해도 안전하며, 실패 시 롤백하지 않고 다음 실행에서 이어서 수렴한다.
"""

import time
from typing import Callable, List, Optional, Tuple
import requests
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from .builders import (
    build_cloudflared_unit,
    build_logrotate_policy,
    build_maintenance_service,
    build_maintenance_timer,
    build_restart_dropin,
    build_tunnel_config,
    validate_cloudflare_params,
    validate_tailscale_params,
)
from .cloudflare import CloudflaredClient
from .errors import ConcurrentRunError, ProvisionerError, TransientExternalError, ValidationError
from .lock import run_lock
from .maintenance import MaintenanceRunner
from .models import (
    ArtifactKind,
    CloudflareRunParameters,
    ManagedArtifact,
    RemoteResource,
    StageOutcome,
    StageStatus,
    TailscaleRunParameters,
)
from .packages import AptManager, detect_distro, detect_timezone
from .probe import ResourceProbe
from .reconciler import Reconciler
from .retry import RetryPolicy
from .runner import CommandRunner
from .supervisor import ServiceSupervisor
from .tailscale import TailscaleClient
from .logger import get_logger

console = Console()

DEFAULT_BACKUP_DIR = "/var/backups/tunnel-agent"

StageResult = Tuple[StageStatus, str]

_STATUS_STYLE = {
    StageStatus.OK: ("green", "✓"),
    StageStatus.CHANGED: ("cyan", "✓"),
    StageStatus.SKIPPED: ("dim", "-"),
    StageStatus.WARNING: ("yellow", "⚠"),
    StageStatus.FAILED: ("red", "✗"),
}


class Orchestrator:
    """단계 순차 실행기 (공통 부분)"""

    title = "Tunnel Agent"

    def __init__(self, runner: Optional[CommandRunner] = None,
                 policy: Optional[RetryPolicy] = None,
                 lock_file: str = "/run/tunnel-agent.lock",
                 backup: bool = True,
                 backup_dir: Optional[str] = DEFAULT_BACKUP_DIR):
        self.logger = get_logger()
        self.runner = runner or CommandRunner()
        self.policy = policy or RetryPolicy()
        self.lock_file = lock_file
        self.probe = ResourceProbe(self.runner)
        self.reconciler = Reconciler(self.probe, backup=backup, backup_dir=backup_dir)
        self.supervisor = ServiceSupervisor(self.runner)
        self.apt = AptManager(self.runner, self.policy)
        self.outcomes: List[StageOutcome] = []

    def validate(self):
        """외부 호출 전에 파라미터 검증 (ValidationError)"""
        raise NotImplementedError

    def stages(self) -> List[Tuple[str, Callable[[], StageResult]]]:
        raise NotImplementedError

    def describe(self) -> List[str]:
        """완료 후 표시할 안내 문구"""
        return []

    def record(self, stage: str, status: StageStatus, message: str = "") -> StageOutcome:
        outcome = StageOutcome(stage, status, message)
        self.outcomes.append(outcome)
        return outcome

    @property
    def warnings(self) -> List[StageOutcome]:
        return [o for o in self.outcomes if o.status is StageStatus.WARNING]

    def _run_stage(self, name: str, stage: Callable[[], StageResult]) -> bool:
        console.print(f"\n[bold cyan]▶ {name}[/bold cyan]")
        self.logger.info(f"Stage: {name}")
        warnings_before = len(self.supervisor.warnings)

        try:
            status, message = stage()
        except (ProvisionerError, OSError) as e:
            console.print(f"[red]✗ {name} 실패: {e}[/red]")
            self.logger.error(f"Stage '{name}' failed: {e}")
            self.record(name, StageStatus.FAILED, str(e))
            return False

        # systemd 경고는 단계를 실패시키지 않고 경고로만 표시
        new_warnings = self.supervisor.warnings[warnings_before:]
        if new_warnings and status in (StageStatus.OK, StageStatus.CHANGED):
            status, message = StageStatus.WARNING, new_warnings[-1]

        self.record(name, status, message)
        return True

    def run(self) -> bool:
        """메인 실행 로직"""
        console.print(Panel.fit(f"[bold cyan]{self.title}[/bold cyan]", border_style="cyan"))
        self.logger.info(f"=== {self.title} run started ===")

        try:
            self.validate()
        except ValidationError as e:
            console.print(f"[red]✗ 파라미터 오류: {e}[/red]")
            self.logger.error(f"Validation failed: {e}")
            self.record("파라미터 검증", StageStatus.FAILED, str(e))
            self.show_summary()
            return False

        self.record("파라미터 검증", StageStatus.OK)

        try:
            with run_lock(self.lock_file):
                for name, stage in self.stages():
                    if not self._run_stage(name, stage):
                        self.logger.error(f"=== {self.title} run aborted ===")
                        self.show_summary()
                        return False
        except (ConcurrentRunError, OSError) as e:
            console.print(f"[red]✗ {e}[/red]")
            self.logger.error(str(e))
            self.record("실행 잠금", StageStatus.FAILED, str(e))
            self.show_summary()
            return False
        except KeyboardInterrupt:
            console.print("\n[yellow]사용자에 의해 중단되었습니다. 다시 실행하면 이어서 진행합니다.[/yellow]")
            self.logger.warning("Execution interrupted by user")
            self.show_summary()
            return False

        self.logger.info(f"=== {self.title} run converged ({len(self.warnings)} warnings) ===")
        self.show_summary()
        for line in self.describe():
            console.print(line)
        return True

    def show_summary(self):
        """실행 결과 요약 표시"""
        table = Table(title="실행 결과 요약", show_header=True, header_style="bold magenta")
        table.add_column("단계", style="cyan", width=28)
        table.add_column("상태", width=10)
        table.add_column("메시지")

        for outcome in self.outcomes:
            color, icon = _STATUS_STYLE[outcome.status]
            table.add_row(
                outcome.stage,
                f"[{color}]{icon} {outcome.status.value}[/{color}]",
                outcome.message[:80] if outcome.message else ""
            )

        console.print()
        console.print(table)

        log_files = self.logger.get_log_files()
        console.print(f"\n[bold]로그 파일:[/bold] {log_files['main_log']}")


class CloudflareOrchestrator(Orchestrator):
    """Cloudflare Tunnel 설치/설정"""

    title = "Cloudflare Tunnel Agent"

    def __init__(self, params: CloudflareRunParameters,
                 runner: Optional[CommandRunner] = None,
                 policy: Optional[RetryPolicy] = None,
                 lock_file: str = "/run/tunnel-agent.lock",
                 backup: bool = True,
                 backup_dir: Optional[str] = DEFAULT_BACKUP_DIR,
                 wait_for_user: Optional[Callable[[str], None]] = None,
                 session: Optional[requests.Session] = None):
        super().__init__(runner, policy, lock_file, backup, backup_dir)
        self.params = params
        self.wait_for_user = wait_for_user
        self.client = CloudflaredClient(params, self.runner, self.policy, session)
        self.tunnel: Optional[RemoteResource] = None
        self.config_changed = False
        self.unit_changed = False

    def validate(self):
        validate_cloudflare_params(self.params)

    def stages(self):
        return [
            ("의존성 설치", self.install_dependencies),
            ("cloudflared 설치", self.install_binary),
            ("cloudflared 버전 확인", self.check_version),
            ("Cloudflare 로그인", self.authenticate),
            ("터널 조회/생성", self.bind_tunnel),
            ("DNS 라우트", self.route_dns),
            ("config.yml", self.write_config),
            ("systemd 유닛", self.write_unit),
            ("서비스 수렴", self.converge_service),
        ]

    def install_dependencies(self) -> StageResult:
        self.apt.update()
        self.apt.install(self.params.packages)
        return StageStatus.OK, " ".join(self.params.packages)

    def install_binary(self) -> StageResult:
        if self.client.install_binary(self.probe):
            return StageStatus.CHANGED, self.params.binary_path
        return StageStatus.OK, "이미 설치됨"

    def check_version(self) -> StageResult:
        version = self.client.version()
        if version is None:
            console.print("[yellow]⚠ cloudflared --version 실행 실패, 바이너리를 확인하세요.[/yellow]")
            self.logger.warning("cloudflared --version failed")
            return StageStatus.WARNING, "버전 확인 실패"
        console.print(version)
        return StageStatus.OK, version

    def authenticate(self) -> StageResult:
        if self.client.is_logged_in():
            console.print(f"[green]✓ 로그인 인증서가 있습니다 ({self.params.cert_path}), 로그인을 건너뜁니다.[/green]")
            self.logger.info("Cloudflare credentials present, skipping login")
            return StageStatus.SKIPPED, "인증서 있음"

        console.print("[cyan]Cloudflare 계정에 로그인합니다. 표시되는 링크를 브라우저에서 열어 주세요.[/cyan]")
        if self.wait_for_user:
            self.wait_for_user("브라우저 로그인을 진행할 준비가 되면 Enter 를 누르세요")
        self.client.login()
        return StageStatus.CHANGED, "로그인 완료"

    def bind_tunnel(self) -> StageResult:
        self.tunnel, created = self.client.ensure_tunnel(self.params.tunnel_name)
        if created:
            return StageStatus.CHANGED, self.tunnel.id
        return StageStatus.OK, self.tunnel.id

    def route_dns(self) -> StageResult:
        bound, detail = self.client.route_dns(self.params.tunnel_name, self.params.domain)
        if bound:
            console.print(f"[green]✓ DNS 바인딩 완료 (또는 이미 존재): {self.params.domain}[/green]")
            return StageStatus.OK, self.params.domain

        console.print("[yellow]⚠ DNS 바인딩 실패 (이미 존재할 수 있음), 계속 진행합니다.[/yellow]")
        self.logger.warning(f"DNS route for {self.params.domain} failed: {detail}")
        return StageStatus.WARNING, detail or "DNS 바인딩 실패"

    def write_config(self) -> StageResult:
        desired = build_tunnel_config(
            self.tunnel.id,
            self.params.credentials_dir,
            self.params.domain,
            self.params.origin_service,
        )
        artifact = ManagedArtifact(self.params.config_path, ArtifactKind.CONFIG_FILE, desired, 0o600)
        result = self.reconciler.reconcile(artifact)
        self.config_changed = result.changed
        self.client.secure_credentials()
        return (StageStatus.CHANGED if result.changed else StageStatus.OK), result.status.value

    def write_unit(self) -> StageResult:
        desired = build_cloudflared_unit(self.params.binary_path, self.params.tunnel_name)
        artifact = ManagedArtifact(self.params.unit_path, ArtifactKind.UNIT_FILE, desired, 0o644)
        result = self.reconciler.reconcile(artifact)
        self.unit_changed = result.changed
        return (StageStatus.CHANGED if result.changed else StageStatus.OK), result.status.value

    def converge_service(self) -> StageResult:
        state = self.supervisor.converge(self.params.service_name, self.unit_changed or self.config_changed)
        return StageStatus.OK, "active" if state.active else "inactive"

    def describe(self) -> List[str]:
        name = self.params.service_name
        return [
            "",
            "[bold green]✓ Cloudflare Tunnel 설정 완료[/bold green]",
            f"  터널 이름: {self.params.tunnel_name}",
            f"  터널 UUID: {self.tunnel.id if self.tunnel else '-'}",
            f"  도메인:    {self.params.domain}",
            f"  설정 파일: {self.params.config_path}",
            f"  실시간 로그: journalctl -fu {name}",
            f"  상태 확인:   systemctl status {name}",
            f"  버전 업데이트: {self.params.binary_path} update",
        ]


class TailscaleOrchestrator(Orchestrator):
    """Tailscale 설치 및 자가 유지보수 설정"""

    title = "Tailscale Agent"

    def __init__(self, params: TailscaleRunParameters,
                 runner: Optional[CommandRunner] = None,
                 policy: Optional[RetryPolicy] = None,
                 lock_file: str = "/run/tunnel-agent.lock",
                 backup: bool = True,
                 backup_dir: Optional[str] = DEFAULT_BACKUP_DIR,
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        super().__init__(runner, policy, lock_file, backup, backup_dir)
        self.params = params
        self.sleep = sleep
        self.logger.register_secret(params.auth_key)
        self.client = TailscaleClient(params, self.runner, self.policy, session)
        self.distro = ""
        self.codename = ""
        self.timezone = "Etc/UTC"
        self.source_changed = False

    @property
    def timer_unit(self) -> str:
        return f"{self.params.maintenance_unit}.timer"

    def validate(self):
        validate_tailscale_params(self.params)

    def stages(self):
        return [
            ("의존성 설치", self.install_dependencies),
            ("시스템 확인", self.detect_system),
            ("Tailscale 패키지 소스", self.register_source),
            ("Tailscale 설치", self.install_package),
            ("tailscaled 시작", self.start_daemon),
            ("Tailscale 로그인", self.authenticate),
            ("자가 복구 설정", self.configure_self_heal),
            ("유지보수 타이머", self.configure_maintenance),
            ("로그 로테이션", self.configure_logrotate),
            ("첫 자가 점검", self.first_check),
        ]

    def install_dependencies(self) -> StageResult:
        warning = ""
        try:
            self.apt.update()
        except TransientExternalError as e:
            # 기존 목록으로 설치를 계속 시도
            self.logger.warning(f"apt-get update failed, continuing: {e}")
            warning = "apt-get update 실패"
        self.apt.install(self.params.packages)
        if warning:
            return StageStatus.WARNING, warning
        return StageStatus.OK, " ".join(self.params.packages)

    def detect_system(self) -> StageResult:
        self.distro, self.codename = detect_distro(self.params.os_release_path)
        self.timezone = detect_timezone(self.runner)
        message = f"{self.distro.capitalize()} ({self.codename}), {self.timezone}"
        console.print(f"[green]✓ 시스템: {message}[/green]")
        self.logger.info(f"Detected {self.distro} {self.codename}, timezone {self.timezone}")
        return StageStatus.OK, message

    def register_source(self) -> StageResult:
        changed = False
        for artifact in self.client.source_artifacts(self.distro, self.codename):
            changed = self.reconciler.reconcile(artifact).changed or changed
        self.source_changed = changed
        if changed:
            self.apt.update()
            return StageStatus.CHANGED, "소스 등록됨"
        return StageStatus.OK, "변경 없음"

    def install_package(self) -> StageResult:
        if self.client.is_installed() and not self.source_changed:
            console.print("[green]✓ Tailscale 이 이미 설치되어 있습니다.[/green]")
            return StageStatus.OK, "이미 설치됨"
        self.apt.install(["tailscale"])
        return StageStatus.CHANGED, "설치 완료"

    def start_daemon(self) -> StageResult:
        name = self.params.service_name
        self.supervisor.ensure_enabled(name)
        self.supervisor.ensure_running(name)
        return StageStatus.OK, name

    def authenticate(self) -> StageResult:
        if self.client.is_connected():
            console.print("[green]✓ Tailscale 이 이미 연결되어 있습니다.[/green]")
            self.logger.info("Tailscale already connected")
            return StageStatus.SKIPPED, "이미 연결됨"

        if self.params.auth_key:
            console.print("[cyan]TS_AUTHKEY 로 무인 로그인합니다...[/cyan]")
        else:
            console.print("[cyan]첫 로그인: 표시되는 링크를 브라우저에서 열어 승인하세요.[/cyan]")
        self.client.up(self.params.auth_key, self.params.accept_routes)

        ip = self.client.get_ip()
        if ip:
            console.print(f"[bold]VPN IP:[/bold] {ip}")
        return StageStatus.CHANGED, ip or "로그인 완료"

    def configure_self_heal(self) -> StageResult:
        artifact = ManagedArtifact(
            self.params.dropin_path,
            ArtifactKind.UNIT_FILE,
            build_restart_dropin(self.params.restart_sec),
            0o644,
        )
        result = self.reconciler.reconcile(artifact)
        self.supervisor.converge(self.params.service_name, result.changed)
        return (StageStatus.CHANGED if result.changed else StageStatus.OK), result.status.value

    def configure_maintenance(self) -> StageResult:
        if not self.params.maintenance_enabled:
            return StageStatus.SKIPPED, "비활성화됨"

        artifacts = [
            ManagedArtifact(
                self.params.maintenance_service_path,
                ArtifactKind.UNIT_FILE,
                build_maintenance_service(self.params.maintenance_exec_start),
                0o644,
            ),
            ManagedArtifact(
                self.params.maintenance_timer_path,
                ArtifactKind.TIMER,
                build_maintenance_timer(self.params.run_time, self.timezone),
                0o644,
            ),
        ]
        changed = False
        for artifact in artifacts:
            changed = self.reconciler.reconcile(artifact).changed or changed

        self.supervisor.converge(self.timer_unit, changed)
        message = f"매일 {self.params.run_time}"
        return (StageStatus.CHANGED if changed else StageStatus.OK), message

    def configure_logrotate(self) -> StageResult:
        if not self.params.logrotate_enabled:
            return StageStatus.SKIPPED, "비활성화됨"

        artifact = ManagedArtifact(
            self.params.logrotate_path,
            ArtifactKind.CONFIG_FILE,
            build_logrotate_policy(
                self.params.maintenance_log,
                self.params.install_log_glob,
                self.params.service_name,
            ),
            0o644,
        )
        result = self.reconciler.reconcile(artifact)
        return (StageStatus.CHANGED if result.changed else StageStatus.OK), result.status.value

    def first_check(self) -> StageResult:
        if not self.params.maintenance_enabled:
            return StageStatus.SKIPPED, "비활성화됨"

        checker = MaintenanceRunner(
            self.params.service_name,
            self.params.maintenance_log,
            settle_seconds=self.params.settle_seconds,
            runner=self.runner,
            supervisor=self.supervisor,
            sleep=self.sleep,
        )
        result = checker.run()
        if not result["healthy"]:
            return StageStatus.WARNING, result["message"]
        return StageStatus.OK, f"로그: {self.params.maintenance_log}"

    def describe(self) -> List[str]:
        lines = [
            "",
            "[bold green]✓ Tailscale 설치 및 자가 유지보수 설정 완료[/bold green]",
            f"  서비스 상태: systemctl status {self.params.service_name}",
            "  IP 확인:     tailscale ip -4",
        ]
        if self.params.maintenance_enabled:
            lines.append(f"  유지보수 로그: {self.params.maintenance_log}")
            lines.append(f"  타이머: {self.timer_unit} (매일 {self.params.run_time})")
        if not self.params.auth_key:
            lines.append("[yellow]무인 서버는 TS_AUTHKEY 환경 변수로 자동 로그인할 수 있습니다.[/yellow]")
        return lines
