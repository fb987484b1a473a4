"""
패키지 관리 모듈 (Debian 계열 apt)
"""

import os
from typing import Dict, Iterable, Optional
from rich.console import Console
from .errors import TransientExternalError, ValidationError
from .retry import RetryPolicy, run_with_retry
from .runner import CommandRunner, ensure_success
from .logger import get_logger

console = Console()

SUPPORTED_DISTROS = ("debian", "ubuntu", "raspbian")

APT_ENV = ["env", "DEBIAN_FRONTEND=noninteractive"]


class AptManager:
    """apt 패키지 관리 클래스 (네트워크 작업은 재시도)"""

    def __init__(self, runner: Optional[CommandRunner] = None,
                 policy: Optional[RetryPolicy] = None,
                 timeout: float = 600):
        self.runner = runner or CommandRunner()
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self.logger = get_logger()

    def _apt(self, *args: str):
        result = self.runner.run([*APT_ENV, "apt-get", *args], timeout=self.timeout)
        return ensure_success(result, TransientExternalError, f"apt-get {' '.join(args)} failed")

    def update(self):
        """패키지 목록 갱신 (재시도 소진 시 TransientExternalError)"""
        self.logger.info("Updating apt package lists...")
        outcome = run_with_retry(lambda: self._apt("update"), self.policy, description="apt-get update")
        if not outcome.ok:
            raise outcome.escalate("apt-get update")

    def install(self, packages: Iterable[str]):
        packages = list(packages)
        if not packages:
            return
        console.print(f"[cyan]패키지 설치 중: {', '.join(packages)}[/cyan]")
        self.logger.info(f"Installing packages: {' '.join(packages)}")

        outcome = run_with_retry(
            lambda: self._apt("install", "-y", *packages),
            self.policy,
            description=f"apt-get install {' '.join(packages)}"
        )
        if not outcome.ok:
            raise outcome.escalate(f"apt-get install {' '.join(packages)}")
        console.print("[green]✓ 패키지 설치 완료[/green]")


def read_os_release(path: str = "/etc/os-release") -> Dict[str, str]:
    """/etc/os-release 파싱"""
    data = {}
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            data[key] = value.strip().strip('"').strip("'")
    return data


def detect_distro(path: str = "/etc/os-release"):
    """(배포판 ID, 코드네임) 반환, Debian 계열이 아니면 ValidationError"""
    if not os.path.exists(path):
        raise ValidationError(f"cannot detect distribution: {path} not found")

    info = read_os_release(path)
    distro = info.get("ID", "").lower()
    codename = info.get("VERSION_CODENAME", "").lower()

    if distro not in SUPPORTED_DISTROS:
        like = info.get("ID_LIKE", "").lower().split()
        raise ValidationError(
            f"unsupported distribution {distro or 'unknown'!r}"
            + (f" (like {' '.join(like)})" if like else "")
            + "; only Debian/Ubuntu are supported"
        )
    if not codename:
        raise ValidationError(f"cannot detect release codename for {distro}")
    return distro, codename


def detect_timezone(runner: CommandRunner, default: str = "Etc/UTC") -> str:
    result = runner.run(["timedatectl", "show", "-p", "Timezone", "--value"], timeout=10)
    timezone = result.stdout.strip() if result.returncode == 0 else ""
    return timezone or default
