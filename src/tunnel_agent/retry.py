"""
재시도 실행 모듈
네트워크/패키지 작업처럼 일시적으로 실패할 수 있는 외부 작업 전용
(로컬 파일 쓰기에는 사용하지 않음)
"""

import subprocess
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type, Union
from rich.console import Console
from .errors import TransientExternalError
from .logger import get_logger

console = Console()

DEFAULT_RETRY_ON: Tuple[Type[BaseException], ...] = (
    TransientExternalError,
    subprocess.SubprocessError,
    OSError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """재시도 정책 (고정 지연)"""
    max_attempts: int = 3
    delay: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay < 0:
            raise ValueError("delay must be >= 0")


@dataclass
class Success:
    value: Any
    attempts: int

    ok = True


@dataclass
class Failure:
    last_error: BaseException
    attempts: int

    ok = False

    def escalate(self, message: str) -> TransientExternalError:
        """재시도 소진 후 치명적 오류로 승격"""
        error = TransientExternalError(
            f"{message} (failed after {self.attempts} attempts): {self.last_error}"
        )
        error.__cause__ = self.last_error
        return error


def run_with_retry(action: Callable[[], Any],
                   policy: RetryPolicy,
                   retry_on: Tuple[Type[BaseException], ...] = DEFAULT_RETRY_ON,
                   description: Optional[str] = None,
                   sleep: Callable[[float], None] = time.sleep) -> Union[Success, Failure]:
    """action 을 최대 policy.max_attempts 번 실행

    첫 성공을 즉시 반환하고, 모두 실패하면 Failure 를 반환한다.
    retry_on 에 없는 예외는 그대로 전파된다.
    """
    logger = get_logger()
    label = description or getattr(action, "__name__", "action")
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            value = action()
        except retry_on as e:
            last_error = e
            if attempt >= policy.max_attempts:
                logger.error(f"{label} failed {attempt} times, giving up: {e}")
                break
            logger.warning(
                f"{label} failed ({attempt}/{policy.max_attempts}), retrying in {policy.delay}s: {e}"
            )
            console.print(
                f"[yellow]⚠ 명령 실패, {policy.delay}초 후 재시도 ({attempt}/{policy.max_attempts})...[/yellow]"
            )
            sleep(policy.delay)
            continue

        if attempt > 1:
            logger.info(f"{label} succeeded on attempt {attempt}")
        return Success(value=value, attempts=attempt)

    return Failure(last_error=last_error, attempts=policy.max_attempts)
