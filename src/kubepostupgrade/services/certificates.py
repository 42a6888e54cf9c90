"""API server certificate age checks and backup."""

import os
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from cryptography import x509

from kubepostupgrade.constants import (
    API_SERVER_CERT_NAME,
    API_SERVER_KEY_NAME,
    CERTIFICATE_BACKUP_HORIZON,
    EXPIRED_DIR_MODE,
    EXPIRED_DIR_NAME,
)
from kubepostupgrade.errors import PostUpgradeError
from kubepostupgrade.errors_catalog import actionable_error
from kubepostupgrade.models import CertificateRecord
from kubepostupgrade.services.transaction import (
    ReversibleAction,
    TransactionalFileMover,
    TransactionError,
    apply_transaction,
)

PEM_CERTIFICATE_MARKER = b"-----BEGIN CERTIFICATE-----"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CertificateExpiryGate:
    """Decides whether a certificate is old enough to be backed up and reissued.

    The age is measured from the certificate's ``NotBefore`` (issuance) time,
    not from how long it has left until ``NotAfter``.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or _utc_now

    def load(self, path: str) -> List[CertificateRecord]:
        try:
            with open(path, "rb") as file_obj:
                data = file_obj.read()
        except OSError as exc:
            raise PostUpgradeError(
                actionable_error("certificate_unreadable", path=path, reason=str(exc))
            ) from exc

        if PEM_CERTIFICATE_MARKER not in data:
            raise PostUpgradeError(actionable_error("certificate_empty", path=path))

        try:
            certificates = x509.load_pem_x509_certificates(data)
        except ValueError as exc:
            raise PostUpgradeError(
                actionable_error("certificate_unreadable", path=path, reason=str(exc))
            ) from exc

        return [
            CertificateRecord(
                subject=cert.subject.rfc4514_string(),
                not_before=cert.not_valid_before_utc,
                not_after=cert.not_valid_after_utc,
            )
            for cert in certificates
        ]

    def should_backup(self, path: str, horizon: timedelta = CERTIFICATE_BACKUP_HORIZON) -> bool:
        records = self.load(path)
        if not records:
            raise PostUpgradeError(actionable_error("certificate_empty", path=path))
        return self.clock() - records[0].not_before > horizon


class CertificateBackupService:
    """Moves the API server cert/key pair into an ``expired`` sub-directory."""

    def __init__(self, logger, file_mover: Optional[TransactionalFileMover] = None):
        self.logger = logger
        self.file_mover = file_mover or TransactionalFileMover(logger=logger)

    @staticmethod
    def backup_dir(cert_dir: str) -> str:
        return os.path.join(cert_dir, EXPIRED_DIR_NAME)

    def build_move_set(self, cert_dir: str) -> dict:
        sub_dir = self.backup_dir(cert_dir)
        return {
            os.path.join(cert_dir, name): os.path.join(sub_dir, name)
            for name in (API_SERVER_CERT_NAME, API_SERVER_KEY_NAME)
        }

    def _make_backup_dir(self, sub_dir: str):
        try:
            os.mkdir(sub_dir, EXPIRED_DIR_MODE)
        except OSError as exc:
            raise PostUpgradeError(
                actionable_error("backup_dir_failed", path=sub_dir, reason=str(exc))
            ) from exc

    def backup(self, cert_dir: str):
        """Move the cert/key pair into ``expired/``.

        A failed move also removes the ``expired`` directory it created, so
        the next run can try again.
        """
        sub_dir = self.backup_dir(cert_dir)
        move_set = self.build_move_set(cert_dir)
        actions = [
            ReversibleAction(
                description=f"create {sub_dir}",
                apply=lambda: self._make_backup_dir(sub_dir),
                revert=lambda: os.rmdir(sub_dir),
            ),
            ReversibleAction(
                description=f"move API server certificate and key to {sub_dir}",
                apply=lambda: self.file_mover.move(move_set),
                revert=lambda: self.file_mover.move({dst: src for src, dst in move_set.items()}),
            ),
        ]
        try:
            apply_transaction(actions, logger=self.logger)
        except TransactionError as exc:
            if exc.rollback_errors:
                raise
            raise exc.cause
        self.logger.info("Backed up API server certificate and key to %s", sub_dir)
