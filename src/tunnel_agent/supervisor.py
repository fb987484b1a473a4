"""
systemd 서비스 관리 모듈
enable / start / restart 는 모두 idempotent 하며, 실패는 경고로만 보고한다
"""

from typing import List, Optional
from rich.console import Console
from .errors import SupervisorWarning
from .models import ServiceState
from .runner import CommandRunner, output_of
from .logger import get_logger

console = Console()


class ServiceSupervisor:
    """systemctl 어댑터

    서비스 상태는 이 클래스를 통해서만 읽고 변경한다.
    실패한 작업은 self.warnings 에 쌓이고 예외로 전파되지 않는다.
    """

    def __init__(self, runner: Optional[CommandRunner] = None, timeout: float = 60):
        self.runner = runner or CommandRunner()
        self.timeout = timeout
        self.logger = get_logger()
        self.warnings: List[str] = []

    def _systemctl(self, *args: str):
        """systemctl 실행, 실패 시 SupervisorWarning"""
        cmd = ["systemctl", *args]
        result = self.runner.run(cmd, timeout=self.timeout)
        if result.returncode != 0:
            msg = output_of(result) or f"exit code {result.returncode}"
            raise SupervisorWarning(f"systemctl {' '.join(args)} failed: {msg}")
        return result

    def _warn(self, error: SupervisorWarning) -> bool:
        self.warnings.append(str(error))
        self.logger.warning(str(error))
        console.print(f"[yellow]⚠ {error}[/yellow]")
        return False

    def is_active(self, name: str) -> bool:
        result = self.runner.run(["systemctl", "is-active", "--quiet", name], timeout=self.timeout)
        active = result.returncode == 0
        self.logger.debug(f"{name} active: {active}")
        return active

    def is_enabled(self, name: str) -> bool:
        result = self.runner.run(["systemctl", "is-enabled", "--quiet", name], timeout=self.timeout)
        return result.returncode == 0

    def state(self, name: str) -> ServiceState:
        return ServiceState(name=name, enabled=self.is_enabled(name), active=self.is_active(name))

    def daemon_reload(self) -> bool:
        try:
            self._systemctl("daemon-reload")
            self.logger.debug("systemd daemon reloaded")
            return True
        except SupervisorWarning as e:
            return self._warn(e)

    def ensure_enabled(self, name: str) -> bool:
        """이미 enable 된 서비스에 다시 호출해도 오류 없음"""
        try:
            self._systemctl("enable", name)
            self.logger.info(f"{name} enabled")
            return True
        except SupervisorWarning as e:
            return self._warn(e)

    def ensure_running(self, name: str) -> bool:
        """비활성 상태일 때만 start"""
        if self.is_active(name):
            self.logger.info(f"{name} already running")
            return True
        try:
            self._systemctl("start", name)
            self.logger.info(f"{name} started")
            return True
        except SupervisorWarning as e:
            return self._warn(e)

    def restart(self, name: str) -> bool:
        try:
            self._systemctl("restart", name)
            self.logger.info(f"{name} restarted")
            return True
        except SupervisorWarning as e:
            return self._warn(e)

    def converge(self, name: str, changed: bool) -> ServiceState:
        """유닛 변경 여부에 따라 서비스 수렴

        변경됨: daemon-reload -> enable -> restart
        그대로: enable -> (비활성일 때만) start
        """
        if changed:
            console.print(f"[cyan]{name} 유닛 변경됨, 재시작합니다...[/cyan]")
            self.daemon_reload()
            enabled = self.ensure_enabled(name)
            self.restart(name)
        else:
            enabled = self.ensure_enabled(name)
            self.ensure_running(name)

        state = ServiceState(name=name, enabled=enabled, active=self.is_active(name))
        if state.active:
            console.print(f"[green]✓ {name} 실행 중[/green]")
        else:
            console.print(f"[yellow]⚠ {name} 이(가) 실행되고 있지 않습니다. journalctl -u {name} 을 확인하세요.[/yellow]")
            self.logger.warning(f"{name} is not active after convergence")
        return state
