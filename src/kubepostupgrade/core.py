import logging
import os
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from rich.console import Console

from .constants import API_SERVER_CERT_NAME, DRY_RUN_DIR_PREFIX, KUBELET_RUN_DIRECTORY
from .errors import ErrorAggregate, NotFoundError, StepError
from .errors_catalog import actionable_error
from .models import UpgradeContext
from .services.certificates import CertificateBackupService, CertificateExpiryGate
from .services.dns_migration import DNSMigrationService
from .services.events import ConsoleEventSink
from .services.filesystem import FileSystemService
from .services.report import RunReport
from .services.retry import RetryingCommand
from .services.self_hosting import SelfHostingUpgradeGate

console = Console()
logger = logging.getLogger("kubepostupgrade")

Outputs = Dict[str, Any]


def _never(_exc: Exception, _ctx: UpgradeContext) -> bool:
    return False


def _always(_ctx: UpgradeContext, _outputs: Outputs) -> bool:
    return True


def _not_found_while_dry_running(exc: Exception, ctx: UpgradeContext) -> bool:
    # The dry run would have posted the new kubelet ConfigMap, so it is
    # expected to be missing when read back.
    return ctx.dry_run and isinstance(exc, NotFoundError)


def _kubelet_dir_resolved(_ctx: UpgradeContext, outputs: Outputs) -> bool:
    return "resolve_kubelet_dir" in outputs


def _not_dry_run(ctx: UpgradeContext, _outputs: Outputs) -> bool:
    return not ctx.dry_run


@dataclass(frozen=True)
class ReconcileStep:
    """One named entry in the fixed post-upgrade sequence."""

    name: str
    action: Callable[[UpgradeContext, Outputs], Any]
    error_prefix: Optional[str] = None
    tolerate: Callable[[Exception, UpgradeContext], bool] = _never
    when: Callable[[UpgradeContext, Outputs], bool] = _always
    skip_reason: str = ""


class PostUpgradeOrchestrator:
    """Runs every post-upgrade reconciliation step once, in a fixed order.

    A failing step never stops the sequence: its error is recorded and the
    next step runs. After the last step, all recorded errors are raised
    together as one :class:`AggregateError`.
    """

    def __init__(
        self,
        logger: logging.Logger = logger,
        console: Console = console,
        filesystem_service: Optional[FileSystemService] = None,
        retrying_command: Optional[RetryingCommand] = None,
        expiry_gate: Optional[CertificateExpiryGate] = None,
        backup_service: Optional[CertificateBackupService] = None,
        self_hosting_gate: Optional[SelfHostingUpgradeGate] = None,
        dns_migration: Optional[DNSMigrationService] = None,
        report: Optional[RunReport] = None,
        cleanup_dry_run_dir: bool = True,
    ):
        self.logger = logger
        self.console = console
        self.filesystem_service = filesystem_service or FileSystemService(logger=logger, console=console)
        self.retrying_command = retrying_command or RetryingCommand(logger=logger)
        self.expiry_gate = expiry_gate or CertificateExpiryGate()
        self.backup_service = backup_service or CertificateBackupService(logger=logger)
        self.self_hosting_gate = self_hosting_gate or SelfHostingUpgradeGate(logger=logger, console=console)
        self.dns_migration = dns_migration or DNSMigrationService(
            logger=logger, retrying_command=self.retrying_command
        )
        self.report = report or RunReport(report_file=None, logger=logger)
        self.cleanup_dry_run_dir = cleanup_dry_run_dir
        self.default_events = ConsoleEventSink(logger=logger, console=console)
        self.steps: Tuple[ReconcileStep, ...] = self.build_steps()

    def build_steps(self) -> Tuple[ReconcileStep, ...]:
        return (
            ReconcileStep(
                "upload_config",
                lambda ctx, _: ctx.phases.upload_configuration(ctx.cluster_config),
                error_prefix="error uploading configuration",
            ),
            ReconcileStep(
                "kubelet_config_map",
                lambda ctx, _: ctx.phases.create_or_update_kubelet_config(ctx.cluster_config),
                error_prefix="error creating kubelet configuration ConfigMap",
            ),
            ReconcileStep(
                "resolve_kubelet_dir",
                self.resolve_kubelet_dir,
                error_prefix="error resolving the kubelet directory",
            ),
            ReconcileStep(
                "download_kubelet_config",
                lambda ctx, outputs: ctx.phases.download_kubelet_config(
                    ctx.target_version, outputs["resolve_kubelet_dir"]
                ),
                error_prefix="error downloading kubelet configuration from the ConfigMap",
                tolerate=_not_found_while_dry_running,
                when=_kubelet_dir_resolved,
                skip_reason="the kubelet directory could not be resolved",
            ),
            ReconcileStep(
                "annotate_cri_socket",
                lambda ctx, _: ctx.phases.annotate_node_cri_socket(
                    ctx.cluster_config.node_name, ctx.cluster_config.cri_socket
                ),
                error_prefix="error uploading crisocket",
            ),
            ReconcileStep(
                "allow_bootstrap_csr_post",
                lambda ctx, _: ctx.phases.allow_bootstrap_tokens_to_post_csrs(),
                error_prefix="error allowing bootstrap tokens to post CSRs",
            ),
            ReconcileStep(
                "auto_approve_bootstrap_csr",
                lambda ctx, _: ctx.phases.auto_approve_node_bootstrap_tokens(),
                error_prefix="error auto-approving node bootstrap token CSRs",
            ),
            ReconcileStep(
                "auto_approve_cert_rotation",
                lambda ctx, _: ctx.phases.auto_approve_node_certificate_rotation(),
                error_prefix="error auto-approving node certificate rotation",
            ),
            ReconcileStep("self_hosting", lambda ctx, _: self.self_hosting_gate.maybe_convert(ctx)),
            ReconcileStep(
                "cluster_info_rbac",
                lambda ctx, _: ctx.phases.create_cluster_info_rbac_rules(),
                error_prefix="error creating cluster-info RBAC rules",
            ),
            ReconcileStep(
                "api_server_certificate",
                self.reconcile_api_server_certificate,
                error_prefix="error creating API server certificate and key",
            ),
            ReconcileStep(
                "dns_addon",
                lambda ctx, _: ctx.phases.ensure_dns_addon(ctx.cluster_config),
                error_prefix="error ensuring DNS addon",
            ),
            ReconcileStep(
                "dns_migration",
                lambda ctx, _: self.dns_migration.remove_old_dns_deployment(ctx.phases, ctx.cluster_config),
                error_prefix="error removing the old DNS deployment",
                when=_not_dry_run,
                skip_reason="dry run",
            ),
            ReconcileStep(
                "proxy_addon",
                lambda ctx, _: ctx.phases.ensure_proxy_addon(ctx.cluster_config),
                error_prefix="error ensuring proxy addon",
            ),
        )

    def _events(self, ctx: UpgradeContext):
        return ctx.events if ctx.events is not None else self.default_events

    def _warn(self, ctx: UpgradeContext, step: str, message: str):
        self._events(ctx).warning(step, message)
        self.report.add_warning(step, message)

    def resolve_kubelet_dir(self, ctx: UpgradeContext, _outputs: Outputs) -> str:
        if ctx.dry_run:
            return self.filesystem_service.make_temp_dir(DRY_RUN_DIR_PREFIX)
        return KUBELET_RUN_DIRECTORY

    def reconcile_api_server_certificate(self, ctx: UpgradeContext, _outputs: Outputs) -> bool:
        cert_dir = ctx.cluster_config.certificates_dir
        try:
            should_backup = self.expiry_gate.should_backup(os.path.join(cert_dir, API_SERVER_CERT_NAME))
        except Exception as exc:
            self._warn(ctx, "postupgrade", f"failed to determine to backup kube-apiserver cert and key: {exc}")
            return False

        if not should_backup:
            return False

        if ctx.dry_run:
            self._events(ctx).info(
                "dryrun",
                f"Would back up the kube-apiserver cert and key to {self.backup_service.backup_dir(cert_dir)} "
                "and generate new ones",
            )
            return False

        try:
            self.backup_service.backup(cert_dir)
        except Exception as exc:
            self._warn(ctx, "postupgrade", f"failed to backup kube-apiserver cert and key: {exc}")

        ctx.phases.create_api_server_cert_and_key(ctx.cluster_config)
        return True

    def _run_step(self, step: ReconcileStep, ctx: UpgradeContext, outputs: Outputs, aggregate: ErrorAggregate):
        if not step.when(ctx, outputs):
            self.logger.info("Skipping %s: %s", step.name, step.skip_reason)
            self.report.step_skipped(step.name, step.skip_reason)
            return

        self.logger.info("Running %s", step.name)
        self.report.step_started(step.name)
        try:
            outputs[step.name] = step.action(ctx, outputs)
        except Exception as exc:
            if step.tolerate(exc, ctx):
                self.logger.info("Tolerating %s failure: %s", step.name, exc)
                self.report.step_finished(step.name, "tolerated", error=str(exc))
                return
            message = f"{step.error_prefix}: {exc}" if step.error_prefix else str(exc)
            error = StepError(step.name, message)
            error.__cause__ = exc
            aggregate.append(error)
            self.logger.error("%s failed: %s", step.name, message)
            self.logger.debug("Failure details for %s", step.name, exc_info=exc)
            self.report.step_finished(step.name, "failed", error=message)
            return

        self.report.step_finished(step.name, "success")

    def _cleanup(self, ctx: UpgradeContext, outputs: Outputs):
        kubelet_dir = outputs.get("resolve_kubelet_dir")
        if ctx.dry_run and kubelet_dir and self.cleanup_dry_run_dir:
            self.filesystem_service.cleanup_dir(kubelet_dir)

    def run(self, ctx: UpgradeContext) -> None:
        aggregate = ErrorAggregate()
        outputs: Outputs = {}
        run_id = uuid.uuid4().hex[:10]

        self.report.start_run(
            run_id=run_id,
            metadata={
                "target_version": str(ctx.target_version),
                "dry_run": ctx.dry_run,
                "node_name": ctx.cluster_config.node_name,
            },
        )
        mode = " (dry run)" if ctx.dry_run else ""
        self.console.print(f"[bold blue]Running post-upgrade tasks for {ctx.target_version}{mode}[/bold blue]")

        try:
            for step in self.steps:
                self._run_step(step, ctx, outputs, aggregate)
        except KeyboardInterrupt:
            self.report.finalize("aborted", aggregate.errors)
            raise
        finally:
            self._cleanup(ctx, outputs)

        error = aggregate.to_error()
        if error is None:
            self.report.finalize("success")
            self.console.print("[green]Post-upgrade tasks completed.[/green]")
            return

        self.report.finalize("failed", aggregate.errors)
        self.console.print(
            f"[bold red]Error:[/bold red] {actionable_error('post_upgrade_failed', count=str(len(aggregate)))}"
        )
        raise error


def perform_post_upgrade_tasks(ctx: UpgradeContext, **kwargs) -> None:
    """Run the post-upgrade sequence; raise :class:`AggregateError` on failures."""
    PostUpgradeOrchestrator(**kwargs).run(ctx)
