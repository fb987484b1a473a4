"""
에이전트 예외 정의
"""


class ProvisionerError(Exception):
    """모든 프로비저닝 오류의 기본 클래스"""
    pass


class ValidationError(ProvisionerError):
    """필수 파라미터가 비어 있거나 형식이 잘못된 경우 (변경 전에 중단)"""
    pass


class TransientExternalError(ProvisionerError):
    """네트워크/패키지 작업처럼 일시적으로 실패할 수 있는 외부 작업 오류"""
    pass


class RemoteResourceError(ProvisionerError):
    """터널 생성/조회 등 원격 리소스 작업 실패"""

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output

    def __str__(self):
        base = super().__str__()
        if self.output:
            return f"{base}: {self.output}"
        return base


class AuthenticationError(ProvisionerError):
    """로그인/인증 실패"""
    pass


class SupervisorWarning(ProvisionerError):
    """systemd 작업 실패 (치명적이지 않음, 경고로만 보고)"""
    pass


class ConcurrentRunError(ProvisionerError):
    """다른 프로비저닝 실행이 이미 진행 중인 경우"""
    pass
