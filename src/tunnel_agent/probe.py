"""
리소스 프로브 모듈
관리 대상 아티팩트의 현재 상태를 읽기만 한다 (절대 변경하지 않음)
"""

import hashlib
import os
from typing import List, Optional, Union
from .models import ABSENT, ArtifactKind, ManagedArtifact, _Absent
from .runner import CommandRunner

ProbeResult = Union[bytes, _Absent]


class ResourceProbe:
    """현재 상태 조회 클래스"""

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner

    def probe(self, artifact: ManagedArtifact) -> ProbeResult:
        """아티팩트 현재 상태

        Returns:
            파일: 바이트 그대로의 내용
            바이너리: 실행 가능한 경우 SHA-256 지문
            존재하지 않으면 ABSENT
        """
        if artifact.kind is ArtifactKind.BINARY:
            return self.probe_binary(artifact.path)
        return self.probe_file(artifact.path)

    def probe_file(self, path: str) -> ProbeResult:
        if not os.path.isfile(path):
            return ABSENT
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return ABSENT

    def probe_binary(self, path: str) -> ProbeResult:
        if not os.path.isfile(path) or not os.access(path, os.X_OK):
            return ABSENT

        sha256_hash = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha256_hash.update(chunk)
        return sha256_hash.hexdigest().encode("ascii")

    def probe_command(self, args: List[str]) -> ProbeResult:
        """명령 출력 (실패하거나 명령이 없으면 ABSENT)"""
        if self.runner is None:
            raise RuntimeError("probe_command requires a CommandRunner")
        result = self.runner.run(args)
        if result.returncode != 0:
            return ABSENT
        return result.stdout.encode("utf-8")
