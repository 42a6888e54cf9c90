"""Self-hosted control plane upgrade gate and the waiters handed to the converter."""

import time
from datetime import timedelta
from typing import Callable, Optional

from kubepostupgrade.constants import (
    FEATURE_SELF_HOSTING,
    KUBERNETES_DIR,
    NAMESPACE_SYSTEM,
    SELF_HOSTING_WAIT_TIMEOUT,
    STATIC_POD_DIR,
    WAITER_POLL_SECONDS,
)
from kubepostupgrade.errors import PostUpgradeError


class DryRunWaiter:
    """Waiter that returns immediately, used while rehearsing."""

    def __init__(self, logger):
        self.logger = logger

    def wait_for_api(self):
        self.logger.info("[dryrun] Would wait for the API server to be healthy")

    def wait_for_pods_with_label(self, label_selector: str, namespace: str = NAMESPACE_SYSTEM):
        self.logger.info("[dryrun] Would wait for pods with label %s in %s to be running", label_selector, namespace)

    def set_timeout(self, timeout: timedelta):
        return None


class KubeWaiter:
    """Polls the cluster until a condition holds or the timeout elapses."""

    def __init__(
        self,
        cluster_client,
        logger,
        timeout: timedelta = SELF_HOSTING_WAIT_TIMEOUT,
        poll_seconds: float = WAITER_POLL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cluster_client = cluster_client
        self.logger = logger
        self.timeout = timeout
        self.poll_seconds = poll_seconds
        self.clock = clock
        self.sleep = sleep

    def set_timeout(self, timeout: timedelta):
        self.timeout = timeout

    def _poll(self, description: str, condition: Callable[[], bool]):
        deadline = self.clock() + self.timeout.total_seconds()
        last_error: Optional[Exception] = None
        while True:
            try:
                if condition():
                    return
                last_error = None
            except PostUpgradeError as exc:
                last_error = exc
                self.logger.debug("Still waiting for %s: %s", description, exc)
            if self.clock() >= deadline:
                message = f"timed out after {self.timeout} waiting for {description}"
                if last_error is not None:
                    message = f"{message}: {last_error}"
                raise PostUpgradeError(message)
            self.sleep(self.poll_seconds)

    def wait_for_api(self):
        self.logger.info("Waiting for the API server to be healthy")
        self._poll("the API server", lambda: bool(self.cluster_client.server_version()))

    def wait_for_pods_with_label(self, label_selector: str, namespace: str = NAMESPACE_SYSTEM):
        self.logger.info("Waiting for pods with label %s to be running", label_selector)

        def all_running() -> bool:
            phases = self.cluster_client.list_pod_phases(namespace, label_selector)
            return bool(phases) and all(phase == "Running" for phase in phases)

        self._poll(f"pods with label {label_selector}", all_running)


class SelfHostingUpgradeGate:
    """Converts a static-pod control plane to a self-hosted one, at most once."""

    def __init__(self, logger, console, waiter_factory: Optional[Callable] = None):
        self.logger = logger
        self.console = console
        self.waiter_factory = waiter_factory or self.default_waiter

    def default_waiter(self, ctx):
        if ctx.dry_run:
            return DryRunWaiter(self.logger)
        return KubeWaiter(ctx.phases.cluster_client, self.logger, timeout=SELF_HOSTING_WAIT_TIMEOUT)

    def maybe_convert(self, ctx) -> bool:
        cfg = ctx.cluster_config
        if not cfg.feature_enabled(FEATURE_SELF_HOSTING):
            return False
        if ctx.phases.is_self_hosted():
            self.logger.debug("Control plane is already self-hosted; nothing to convert.")
            return False

        waiter = self.waiter_factory(ctx)
        self.console.print("[blue]\\[self-hosted] Creating self-hosted control plane.[/blue]")
        try:
            ctx.phases.convert_to_self_hosted(STATIC_POD_DIR, KUBERNETES_DIR, cfg, waiter, ctx.dry_run)
        except Exception as exc:
            raise PostUpgradeError(f"error creating self hosted control plane: {exc}") from exc
        return True
