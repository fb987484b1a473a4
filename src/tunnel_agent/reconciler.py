"""
조정(Reconcile) 모듈
desired 와 현재 상태를 비교해서 다를 때만 쓰고, 덮어쓰기 전에 백업을 남긴다

동시 실행은 지원하지 않는다. 한 번에 하나의 실행만 파일을 쓴다고 가정하며
이는 lock.run_lock 으로 보장한다.
"""

import os
import shutil
import tempfile
import time
from typing import Callable, Optional
from rich.console import Console
from .models import ABSENT, ArtifactKind, ManagedArtifact, ReconcileResult, ReconcileStatus
from .probe import ResourceProbe
from .logger import get_logger

console = Console()


class Reconciler:
    """아티팩트 조정 클래스"""

    def __init__(self, probe: Optional[ResourceProbe] = None,
                 backup: bool = True,
                 clock: Callable[[], float] = time.time,
                 backup_dir: Optional[str] = None):
        """
        Args:
            backup: 덮어쓰기 전 이전 내용 백업 여부
            backup_dir: 백업 위치. None 이면 원본 옆, 지정하면 그 아래에 원본 절대
                경로 구조 그대로 둔다. logrotate.d, sources.list.d 같은 include
                디렉토리에는 .bak 을 두지 않는다
        """
        self.probe = probe or ResourceProbe()
        self.backup = backup
        self.backup_dir = backup_dir
        self.clock = clock
        self.logger = get_logger()

    def plan(self, artifact: ManagedArtifact) -> ReconcileStatus:
        """reconcile 이 반환할 상태 (디스크를 건드리지 않음)"""
        current = self.probe.probe(artifact)
        if current is ABSENT:
            return ReconcileStatus.CREATED
        if current == artifact.desired:
            return ReconcileStatus.UNCHANGED
        return ReconcileStatus.UPDATED

    def reconcile(self, artifact: ManagedArtifact) -> ReconcileResult:
        """desired 와 다를 때만 원자적으로 기록"""
        if artifact.kind is ArtifactKind.BINARY:
            raise ValueError("binaries are installed by CloudflaredClient.install_binary, not reconciled by content")

        current = self.probe.probe(artifact)

        if current is not ABSENT and current == artifact.desired:
            self._apply_mode(artifact)
            console.print(f"[green]✓ {artifact.name} 변경 없음, 건너뜀[/green]")
            self.logger.info(f"{artifact.path} unchanged")
            return ReconcileResult(artifact.path, ReconcileStatus.UNCHANGED)

        backup_path = None
        if current is not ABSENT and self.backup:
            backup_path = self._backup(artifact.path)

        atomic_write(artifact.path, artifact.desired, artifact.mode)

        if current is ABSENT:
            status = ReconcileStatus.CREATED
            console.print(f"[cyan]→ {artifact.name} 생성: {artifact.path}[/cyan]")
        else:
            status = ReconcileStatus.UPDATED
            console.print(f"[cyan]→ {artifact.name} 업데이트: {artifact.path}[/cyan]")

        self.logger.info(
            f"{artifact.path} {status.value}" + (f" (backup: {backup_path})" if backup_path else "")
        )
        return ReconcileResult(artifact.path, status, backup_path)

    def _backup(self, path: str) -> str:
        """<path>.<epoch>.bak 으로 복사 (충돌 시 .N 추가)"""
        if self.backup_dir:
            mirrored = os.path.join(self.backup_dir, os.path.abspath(path).lstrip(os.sep))
            os.makedirs(os.path.dirname(mirrored), mode=0o700, exist_ok=True)
        else:
            mirrored = path
        base = f"{mirrored}.{int(self.clock())}.bak"
        backup_path = base
        counter = 1
        while os.path.exists(backup_path):
            backup_path = f"{base}.{counter}"
            counter += 1

        shutil.copy2(path, backup_path)
        self.logger.debug(f"Backed up {path} -> {backup_path}")
        return backup_path

    def _apply_mode(self, artifact: ManagedArtifact):
        if artifact.mode is None:
            return
        current_mode = os.stat(artifact.path).st_mode & 0o7777
        if current_mode != artifact.mode:
            os.chmod(artifact.path, artifact.mode)
            self.logger.debug(f"chmod {oct(artifact.mode)} {artifact.path}")


def atomic_write(path: str, content: bytes, mode: Optional[int] = None):
    """같은 디렉토리의 임시 파일에 쓴 후 os.replace 로 교체

    중간에 실패해도 최종 경로에는 이전 내용 또는 새 내용만 존재한다.
    """
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)

    # mkstemp 은 0600 으로 만들기 때문에 기존 권한(없으면 0644)을 유지
    if mode is None:
        mode = os.stat(path).st_mode & 0o7777 if os.path.exists(path) else 0o644

    fd, tmp_path = tempfile.mkstemp(
        dir=directory,
        prefix=f".{os.path.basename(path)}.",
        suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
