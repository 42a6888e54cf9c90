"""All-or-nothing application of reversible actions."""

import os
from dataclasses import dataclass
from typing import Callable, List, Sequence

from kubepostupgrade.errors import PostUpgradeError, format_errors
from kubepostupgrade.models import FileMoveSet


@dataclass(frozen=True)
class ReversibleAction:
    """One unit of work together with the action that undoes it."""

    description: str
    apply: Callable[[], None]
    revert: Callable[[], None]


class TransactionError(PostUpgradeError):
    """Raised when an action failed; carries rollback failures too."""

    def __init__(self, message: str, cause: BaseException, rollback_errors: List[BaseException]):
        self.cause = cause
        self.rollback_errors = rollback_errors
        super().__init__(message)


def apply_transaction(actions: Sequence[ReversibleAction], logger=None):
    """Apply actions in order; on the first failure revert the applied ones.

    Reverts run newest first. A revert that fails does not stop the remaining
    reverts, and is reported in the raised error next to the original failure.
    """
    applied: List[ReversibleAction] = []
    for action in actions:
        try:
            action.apply()
        except Exception as exc:
            rollback_errors = _rollback(applied, logger)
            message = f"{action.description} failed. Got errors: {format_errors([exc, *rollback_errors])}"
            raise TransactionError(message, exc, rollback_errors) from exc
        applied.append(action)
        if logger:
            logger.debug("Applied: %s", action.description)


def _rollback(applied: List[ReversibleAction], logger) -> List[BaseException]:
    errors: List[BaseException] = []
    for action in reversed(applied):
        try:
            action.revert()
        except Exception as exc:
            errors.append(exc)
            if logger:
                logger.error("Could not revert %s: %s", action.description, exc)
        else:
            if logger:
                logger.debug("Reverted: %s", action.description)
    return errors


class TransactionalFileMover:
    """Moves a set of files, restoring every moved file if any move fails."""

    def __init__(self, logger, rename: Callable[[str, str], None] = os.rename):
        self.logger = logger
        self.rename = rename

    def _move_action(self, source: str, destination: str) -> ReversibleAction:
        return ReversibleAction(
            description=f"move {source} -> {destination}",
            apply=lambda: self.rename(source, destination),
            revert=lambda: self.rename(destination, source),
        )

    def move(self, pairs: FileMoveSet):
        self._ensure_disjoint(pairs)
        actions = [self._move_action(source, destination) for source, destination in pairs.items()]
        try:
            apply_transaction(actions, logger=self.logger)
        except TransactionError as exc:
            raise PostUpgradeError(
                f"couldn't move these files: {dict(pairs)}. {exc}"
            ) from exc

    @staticmethod
    def _ensure_disjoint(pairs: FileMoveSet):
        sources = set(pairs.keys())
        destinations = list(pairs.values())
        if len(set(destinations)) != len(destinations):
            raise PostUpgradeError(f"Move set has duplicate destinations: {dict(pairs)}")
        overlap = sources.intersection(destinations)
        if overlap:
            raise PostUpgradeError(
                f"Move set paths are both source and destination: {', '.join(sorted(overlap))}"
            )
