"""
Error taxonomy
==============

모든 예외는 GovernanceError 하위.

- ProposalValidationError: 잘못된 proposal (게이트 평가 전에 즉시 실패)
- BacktestConfigError: 잘못된 백테스트 설정 (시뮬레이션 시작 전 실패)
- RegistryError: dynamic gate 생성/만료 실패 (로그 후 last-known-good 유지)
- PersistenceError: store 자체를 열 수 없음 (row 단위 실패는 예외 아님)

데이터 부족, 게이트 트리거는 예외가 아니라 결과(DecisionResult)로 표현한다.
"""


class GovernanceError(RuntimeError):
    pass


class ProposalValidationError(GovernanceError, ValueError):
    pass


class BacktestConfigError(GovernanceError, ValueError):
    pass


class RegistryError(GovernanceError):
    pass


class PersistenceError(GovernanceError):
    pass
