"""
테스트 공통 픽스처
"""

import pytest
from fakes import FakeRunner
from tunnel_agent.logger import init_logger


@pytest.fixture(autouse=True)
def agent_logger(tmp_path_factory):
    """로그를 별도 임시 디렉토리에 기록"""
    return init_logger(str(tmp_path_factory.mktemp("logs")), "DEBUG", False)


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def no_sleep():
    """time.sleep 대체 (대기 시간만 기록)"""
    delays = []
    return delays.append, delays
