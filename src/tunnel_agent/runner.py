"""
외부 명령 실행 모듈
apt-get, cloudflared, tailscale, systemctl 등 외부 프로세스 호출
"""

import subprocess
from typing import List, Optional, Type
from .errors import ProvisionerError
from .logger import get_logger

# 명령을 찾을 수 없거나 시간 초과 시 셸과 같은 종료 코드를 사용
EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


class CommandRunner:
    """외부 명령 실행 클래스

    0이 아닌 종료 코드는 예외가 아니라 CompletedProcess 로 돌려준다.
    실패 판단은 호출하는 쪽이 한다.
    """

    def __init__(self):
        self.logger = get_logger()

    def run(self, args: List[str], timeout: Optional[float] = None,
            input: Optional[str] = None, capture: bool = True,
            display: Optional[str] = None) -> subprocess.CompletedProcess:
        """명령 실행

        Args:
            args: 명령과 인자
            timeout: 시간 제한 (초)
            input: 표준 입력으로 전달할 문자열
            capture: False 면 출력이 터미널로 그대로 전달됨 (대화형 로그인 등)
            display: 로그에 남길 명령 문자열 (비밀 값이 포함된 경우)
        """
        shown = display or " ".join(args)
        self.logger.debug(f"$ {shown}")

        try:
            result = subprocess.run(
                args,
                capture_output=capture,
                text=True,
                timeout=timeout,
                input=input
            )
        except FileNotFoundError as e:
            self.logger.debug(f"Command not found: {args[0]}")
            return subprocess.CompletedProcess(args, EXIT_NOT_FOUND, "", str(e))
        except subprocess.TimeoutExpired:
            self.logger.warning(f"Command timed out after {timeout}s: {shown}")
            return subprocess.CompletedProcess(args, EXIT_TIMEOUT, "", f"timed out after {timeout}s")

        if result.stdout is None:
            result.stdout = ""
        if result.stderr is None:
            result.stderr = ""

        if result.returncode != 0:
            self.logger.debug(f"exit {result.returncode}: {output_of(result)}")
        return result


def output_of(result: subprocess.CompletedProcess) -> str:
    """stderr 우선, 없으면 stdout"""
    return (result.stderr or "").strip() or (result.stdout or "").strip()


def ensure_success(result: subprocess.CompletedProcess,
                   error_cls: Type[ProvisionerError],
                   message: str) -> subprocess.CompletedProcess:
    """종료 코드가 0이 아니면 error_cls 예외 발생"""
    if result.returncode != 0:
        detail = output_of(result) or f"exit code {result.returncode}"
        raise error_cls(f"{message}: {detail}")
    return result
