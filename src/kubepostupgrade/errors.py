"""Domain errors for kube-postupgrade."""

from typing import Iterable, List, Optional


class PostUpgradeError(RuntimeError):
    """Raised when a reconciliation step cannot complete."""


class NotFoundError(PostUpgradeError):
    """Raised when a cluster object or file the step needs does not exist."""


class DeploymentNotReadyError(PostUpgradeError):
    """Raised when a deployment has no ready replicas yet."""


class StepError(PostUpgradeError):
    """Failure of one reconciliation step, flattened with its context."""

    def __init__(self, step: str, message: str):
        self.step = step
        super().__init__(message)


class AggregateError(PostUpgradeError):
    """Single error describing every failure collected during one run."""

    def __init__(self, errors: Iterable[BaseException]):
        self.errors: List[BaseException] = list(errors)
        super().__init__(format_errors(self.errors))


def format_errors(errors: List[BaseException]) -> str:
    if len(errors) == 1:
        return str(errors[0])
    return "[" + ", ".join(str(error) for error in errors) + "]"


class ErrorAggregate:
    """Append-only, ordered collection of failures for a single run."""

    def __init__(self):
        self._errors: List[BaseException] = []

    def append(self, error: BaseException):
        self._errors.append(error)

    @property
    def errors(self) -> List[BaseException]:
        return list(self._errors)

    def __len__(self) -> int:
        return len(self._errors)

    def __bool__(self) -> bool:
        return bool(self._errors)

    def to_error(self) -> Optional[AggregateError]:
        if not self._errors:
            return None
        return AggregateError(self._errors)
