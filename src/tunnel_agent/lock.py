"""
단일 실행 잠금
같은 호스트에서 프로비저닝이 동시에 두 번 실행되지 않도록 한다
"""

import fcntl
import os
from contextlib import contextmanager
from .errors import ConcurrentRunError
from .logger import get_logger


@contextmanager
def run_lock(path: str):
    """배타적 flock 획득 (이미 잡혀 있으면 기다리지 않고 ConcurrentRunError)"""
    logger = get_logger()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    with open(path, "a+", encoding="utf-8") as handle:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            raise ConcurrentRunError(
                f"another tunnel-agent run holds {path}; wait for it to finish"
            ) from e

        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()}\n")
        handle.flush()
        logger.debug(f"Acquired run lock {path}")
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            logger.debug(f"Released run lock {path}")
