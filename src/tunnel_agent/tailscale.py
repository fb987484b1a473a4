"""
Tailscale 관리 모듈
패키지 소스 등록, 연결 상태 확인, 로그인
"""

import json
from typing import Dict, List, Optional
import requests
from rich.console import Console
from .errors import AuthenticationError, TransientExternalError
from .models import ArtifactKind, ManagedArtifact, TailscaleRunParameters
from .retry import RetryPolicy, run_with_retry
from .runner import CommandRunner, output_of
from .logger import get_logger, mask_secret

console = Console()


class TailscaleClient:
    """tailscale 명령 및 패키지 소스 관리 클래스"""

    def __init__(self, params: TailscaleRunParameters,
                 runner: Optional[CommandRunner] = None,
                 policy: Optional[RetryPolicy] = None,
                 session: Optional[requests.Session] = None,
                 timeout: float = 60):
        self.params = params
        self.runner = runner or CommandRunner()
        self.policy = policy or RetryPolicy()
        self.session = session or requests.Session()
        self.timeout = timeout
        self.logger = get_logger()

    # 패키지 소스

    def source_urls(self, distro: str, codename: str) -> Dict[str, str]:
        base = f"{self.params.package_base_url.rstrip('/')}/{distro}/{codename}"
        return {
            "keyring": f"{base}.noarmor.gpg",
            "list": f"{base}.tailscale-keyring.list",
        }

    def _fetch(self, url: str) -> bytes:
        try:
            response = self.session.get(url, timeout=60)
            response.raise_for_status()
        except requests.RequestException as e:
            raise TransientExternalError(f"failed to fetch {url}: {e}") from e
        if not response.content:
            raise TransientExternalError(f"empty response from {url}")
        return response.content

    def fetch(self, url: str) -> bytes:
        """URL 다운로드 (재시도 소진 시 TransientExternalError)"""
        outcome = run_with_retry(lambda: self._fetch(url), self.policy, description=f"GET {url}")
        if not outcome.ok:
            raise outcome.escalate(f"GET {url}")
        return outcome.value

    def source_artifacts(self, distro: str, codename: str) -> List[ManagedArtifact]:
        """apt 키링 및 소스 목록 아티팩트 (desired 내용은 다운로드로 계산)"""
        urls = self.source_urls(distro, codename)
        self.logger.info(f"Fetching Tailscale package source for {distro}/{codename}")
        return [
            ManagedArtifact(self.params.keyring_path, ArtifactKind.CONFIG_FILE,
                            self.fetch(urls["keyring"]), 0o644),
            ManagedArtifact(self.params.source_list_path, ArtifactKind.CONFIG_FILE,
                            self.fetch(urls["list"]), 0o644),
        ]

    # 상태

    def is_installed(self) -> bool:
        result = self.runner.run(["tailscale", "version"], timeout=self.timeout)
        installed = result.returncode == 0
        self.logger.debug(f"Tailscale installed: {installed}")
        return installed

    def get_status(self) -> Dict:
        result = self.runner.run(["tailscale", "status", "--json"], timeout=self.timeout)
        if result.returncode != 0:
            return {}
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as e:
            self.logger.warning(f"Cannot parse tailscale status: {e}")
            return {}

    def is_connected(self) -> bool:
        state = self.get_status().get("BackendState")
        self.logger.debug(f"Tailscale backend state: {state}")
        return state == "Running"

    def get_ip(self) -> Optional[str]:
        result = self.runner.run(["tailscale", "ip", "-4"], timeout=self.timeout)
        if result.returncode != 0:
            return None
        ips = result.stdout.strip().splitlines()
        return ips[0] if ips else None

    # 인증

    def up(self, auth_key: str = "", accept_routes: bool = True):
        """tailscale up (auth key 가 없으면 브라우저 로그인)"""
        if auth_key:
            cmd = ["tailscale", "up", f"--authkey={auth_key}", "--reset"]
            if accept_routes:
                cmd.append("--accept-routes")
            display = " ".join(cmd).replace(auth_key, mask_secret(auth_key))
            self.logger.info("Logging in with pre-shared auth key")
            result = self.runner.run(cmd, timeout=120, display=display)
        else:
            cmd = ["tailscale", "up"]
            if accept_routes:
                cmd.append("--accept-routes")
            self.logger.info("Starting interactive Tailscale login")
            result = self.runner.run(cmd, capture=False)

        if result.returncode != 0:
            detail = output_of(result)
            if auth_key and detail:
                detail = detail.replace(auth_key, mask_secret(auth_key))
            raise AuthenticationError(f"tailscale up failed: {detail or f'exit code {result.returncode}'}")
