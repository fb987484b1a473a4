"""
Cloudflare Tunnel (cloudflared) 관리 모듈
바이너리 설치, 로그인, 터널 조회/생성, DNS 라우트 바인딩
"""

import glob
import json
import os
import re
from typing import List, Optional, Tuple, Union
import requests
from rich.console import Console
from .errors import AuthenticationError, RemoteResourceError, TransientExternalError
from .models import ABSENT, NOT_FOUND, CloudflareRunParameters, RemoteResource, _NotFound
from .probe import ResourceProbe
from .reconciler import atomic_write
from .retry import RetryPolicy, run_with_retry
from .runner import CommandRunner, output_of
from .logger import get_logger

console = Console()

_UUID_SEARCH_RE = re.compile(r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b")
_ZERO_TIME = "0001-01-01T00:00:00Z"

TunnelLookup = Union[RemoteResource, _NotFound]


def parse_tunnel_list(output: str) -> List[RemoteResource]:
    """`cloudflared tunnel list --output json` 결과 파싱 (삭제된 터널 제외)"""
    text = output.strip()
    if not text:
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise RemoteResourceError("cannot parse tunnel list", text) from e

    if data is None:
        return []
    if not isinstance(data, list):
        raise RemoteResourceError("unexpected tunnel list format", text)

    tunnels = []
    for item in data:
        if not isinstance(item, dict) or not item.get("id") or not item.get("name"):
            continue
        deleted_at = item.get("deleted_at")
        if deleted_at and deleted_at != _ZERO_TIME:
            continue
        tunnels.append(RemoteResource(id=item["id"], name=item["name"]))
    return tunnels


def find_by_name(tunnels: List[RemoteResource], name: str) -> TunnelLookup:
    for tunnel in tunnels:
        if tunnel.name == name:
            return tunnel
    return NOT_FOUND


def parse_created_tunnel_id(output: str) -> Optional[str]:
    """`cloudflared tunnel create` 출력에서 UUID 추출"""
    match = _UUID_SEARCH_RE.search(output.lower())
    return match.group(0) if match else None


class CloudflaredClient:
    """cloudflared 명령 래퍼"""

    def __init__(self, params: CloudflareRunParameters,
                 runner: Optional[CommandRunner] = None,
                 policy: Optional[RetryPolicy] = None,
                 session: Optional[requests.Session] = None,
                 timeout: float = 120):
        self.params = params
        self.binary = params.binary_path
        self.runner = runner or CommandRunner()
        self.policy = policy or RetryPolicy()
        self.session = session or requests.Session()
        self.timeout = timeout
        self.logger = get_logger()

    # 바이너리

    def install_binary(self, probe: ResourceProbe) -> bool:
        """바이너리가 없을 때만 다운로드 (설치했으면 True)"""
        if probe.probe_binary(self.binary) is not ABSENT:
            console.print(f"[green]✓ cloudflared 가 이미 설치되어 있습니다: {self.binary}[/green]")
            self.logger.info(f"cloudflared present at {self.binary}")
            return False

        console.print("[cyan]cloudflared 다운로드 중...[/cyan]")
        self.logger.info(f"Downloading cloudflared from {self.params.download_url}")

        outcome = run_with_retry(self._download, self.policy, description="cloudflared download")
        if not outcome.ok:
            raise outcome.escalate("cloudflared download")

        atomic_write(self.binary, outcome.value, 0o755)
        console.print(f"[green]✓ cloudflared 설치 완료: {self.binary}[/green]")
        self.logger.info(f"cloudflared installed at {self.binary}")
        return True

    def _download(self) -> bytes:
        try:
            response = self.session.get(self.params.download_url, timeout=300, allow_redirects=True)
            response.raise_for_status()
        except requests.RequestException as e:
            raise TransientExternalError(f"download failed: {e}") from e
        if not response.content:
            raise TransientExternalError("download returned an empty body")
        return response.content

    def version(self) -> Optional[str]:
        result = self.runner.run([self.binary, "--version"], timeout=30)
        if result.returncode != 0:
            return None
        return result.stdout.strip().splitlines()[0] if result.stdout.strip() else None

    # 인증

    def is_logged_in(self) -> bool:
        return os.path.isfile(self.params.cert_path)

    def login(self):
        """브라우저 로그인 (출력이 터미널로 전달되어 URL 이 표시됨)"""
        os.makedirs(self.params.credentials_dir, exist_ok=True)
        self.logger.info("Running cloudflared tunnel login")
        result = self.runner.run([self.binary, "tunnel", "login"], capture=False)
        if result.returncode != 0:
            raise AuthenticationError(
                "cloudflared tunnel login failed; run 'cloudflared tunnel login' manually and retry"
            )
        if not self.is_logged_in():
            raise AuthenticationError(f"login finished but {self.params.cert_path} was not created")

    # 원격 리소스

    def list_tunnels(self) -> List[RemoteResource]:
        result = self.runner.run([self.binary, "tunnel", "list", "--output", "json"], timeout=self.timeout)
        if result.returncode != 0:
            raise RemoteResourceError("cloudflared tunnel list failed", output_of(result))
        return parse_tunnel_list(result.stdout)

    def find_tunnel(self, name: str) -> TunnelLookup:
        return find_by_name(self.list_tunnels(), name)

    def create_tunnel(self, name: str) -> RemoteResource:
        self.logger.info(f"Creating tunnel {name}")
        result = self.runner.run([self.binary, "tunnel", "create", name], timeout=self.timeout)
        combined = f"{result.stdout}\n{result.stderr}"
        if result.returncode != 0:
            raise RemoteResourceError(f"failed to create tunnel {name}", output_of(result))

        tunnel_id = parse_created_tunnel_id(combined)
        if tunnel_id:
            return RemoteResource(id=tunnel_id, name=name)

        # 출력 형식이 바뀐 경우 목록에서 다시 조회
        self.logger.debug("No UUID in create output, looking tunnel up again")
        found = self.find_tunnel(name)
        if found is NOT_FOUND:
            raise RemoteResourceError(f"cannot determine UUID of tunnel {name}", combined.strip())
        return found

    def ensure_tunnel(self, name: str) -> Tuple[RemoteResource, bool]:
        """같은 이름의 터널이 있으면 재사용, 없으면 생성 (created 여부 반환)"""
        found = self.find_tunnel(name)
        if found is not NOT_FOUND:
            console.print(f"[green]✓ 기존 터널 사용: {found.name} ({found.id})[/green]")
            self.logger.info(f"Found existing tunnel {found.name} ({found.id})")
            return found, False

        console.print(f"[cyan]터널 생성 중: {name}[/cyan]")
        tunnel = self.create_tunnel(name)
        console.print(f"[green]✓ 터널 생성 완료: {tunnel.id}[/green]")
        self.logger.info(f"Tunnel created: {tunnel.id}")
        return tunnel, True

    def route_dns(self, name: str, domain: str) -> Tuple[bool, str]:
        """DNS 라우트 바인딩 (이미 존재하면 실패할 수 있음)"""
        result = self.runner.run([self.binary, "tunnel", "route", "dns", name, domain], timeout=self.timeout)
        if result.returncode == 0:
            self.logger.info(f"DNS route {domain} -> {name} bound")
            return True, ""
        return False, output_of(result)

    def secure_credentials(self) -> List[str]:
        """인증 파일 및 config.yml 권한을 0600 으로 제한"""
        directory = self.params.credentials_dir
        paths = sorted(glob.glob(os.path.join(directory, "*.json")))
        if os.path.isfile(self.params.config_path):
            paths.append(self.params.config_path)

        tightened = []
        for path in paths:
            if os.stat(path).st_mode & 0o777 != 0o600:
                os.chmod(path, 0o600)
                tightened.append(path)
        if tightened:
            self.logger.debug(f"chmod 600: {', '.join(tightened)}")
        return tightened
