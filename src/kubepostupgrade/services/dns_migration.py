"""Swap between the kube-dns and CoreDNS deployments once the new one is ready."""

from typing import Tuple

from kubepostupgrade.constants import (
    COREDNS,
    DNS_MIGRATION_ATTEMPTS,
    FEATURE_COREDNS,
    KUBE_DNS,
    NAMESPACE_SYSTEM,
)
from kubepostupgrade.errors import DeploymentNotReadyError, NotFoundError
from kubepostupgrade.services.retry import RetryingCommand


class DNSMigrationService:
    """Removes the DNS deployment that the feature gates no longer select."""

    def __init__(self, logger, retrying_command: RetryingCommand, max_attempts: int = DNS_MIGRATION_ATTEMPTS):
        self.logger = logger
        self.retrying_command = retrying_command
        self.max_attempts = max_attempts

    @staticmethod
    def select_deployments(cfg) -> Tuple[str, str]:
        """Return ``(installed, stale)`` deployment names."""
        if cfg.feature_enabled(FEATURE_COREDNS):
            return COREDNS, KUBE_DNS
        return KUBE_DNS, COREDNS

    def swap_once(self, phases, cfg):
        installed, stale = self.select_deployments(cfg)

        readiness = phases.get_deployment(NAMESPACE_SYSTEM, installed)
        if readiness.ready_replicas == 0:
            raise DeploymentNotReadyError("the DNS deployment isn't ready yet")

        try:
            phases.delete_deployment_foreground(NAMESPACE_SYSTEM, stale)
        except NotFoundError:
            self.logger.debug("Deployment %s is already gone.", stale)
            return
        self.logger.info("Removed the %s deployment in favor of %s.", stale, installed)

    def remove_old_dns_deployment(self, phases, cfg):
        self.retrying_command.run(
            lambda: self.swap_once(phases, cfg),
            self.max_attempts,
            description="DNS deployment migration",
        )
