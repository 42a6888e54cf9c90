import logging
import os

import click
from packaging.version import InvalidVersion, Version
from rich.logging import RichHandler

from .core import PostUpgradeOrchestrator, console
from .errors import AggregateError, PostUpgradeError
from .models import UpgradeContext
from .services.cluster_client import ClusterClient
from .services.config_loader import ConfigLoader
from .services.events import ConsoleEventSink
from .services.filesystem import FileSystemService
from .services.phases import ClusterPhases
from .services.pki import ApiServerCertIssuer
from .services.report import RunReport

DEFAULT_CONFIG_FILE = ".kube-postupgrade.yml"


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.command()
@click.option("--version", "target_version", required=False, help="Kubernetes version the control plane was upgraded to")
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--kubeconfig", required=False, type=click.Path(), help="Path to the admin kubeconfig file.")
@click.option("--context", required=False, help="Kubeconfig context to use.")
@click.option(
    "--dry-run",
    is_flag=True,
    default=None,
    help="Rehearse every step without changing the cluster or local files.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.option("--report-file", type=click.Path(), help="Write a JSON report of every step to this path.")
def main(target_version, config, kubeconfig, context, dry_run, verbose, log_file, report_file):
    """Reconcile cluster state after the control plane was upgraded."""
    logger = logging.getLogger("kubepostupgrade")

    config_loader = ConfigLoader()
    try:
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except PostUpgradeError as exc:
        raise click.ClickException(str(exc)) from exc

    target_version = _resolve_option(target_version, config_values, "version")
    kubeconfig = _resolve_option(kubeconfig, config_values, "kubeconfig")
    context = _resolve_option(context, config_values, "context")
    dry_run = bool(_resolve_option(dry_run, config_values, "dry_run", default=False))
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")
    report_file = _resolve_option(report_file, config_values, "report_file")

    if not target_version:
        raise click.ClickException("Missing required option '--version' (or provide it in config).")
    try:
        parsed_version = Version(str(target_version))
    except InvalidVersion as exc:
        raise click.ClickException(f"Invalid Kubernetes version: {target_version}") from exc

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    try:
        cluster_config = config_loader.build_cluster_configuration(
            config_values, kubernetes_version=str(parsed_version)
        )
        cluster_client = ClusterClient(kubeconfig=kubeconfig, context=context, dry_run=dry_run)
    except PostUpgradeError as exc:
        raise click.ClickException(str(exc)) from exc

    filesystem_service = FileSystemService(logger=logger, console=console)
    phases = ClusterPhases(
        cluster_client=cluster_client,
        filesystem_service=filesystem_service,
        cert_issuer=ApiServerCertIssuer(logger=logger),
        logger=logger,
    )
    upgrade_context = UpgradeContext(
        phases=phases,
        cluster_config=cluster_config,
        target_version=parsed_version,
        dry_run=dry_run,
        events=ConsoleEventSink(logger=logger, console=console),
    )
    orchestrator = PostUpgradeOrchestrator(
        logger=logger,
        console=console,
        filesystem_service=filesystem_service,
        report=RunReport(report_file=report_file, logger=logger),
    )

    exit_code = 0
    try:
        orchestrator.run(upgrade_context)
    except AggregateError as exc:
        logger.error(str(exc))
        exit_code = 1
    except KeyboardInterrupt:
        console.print("[bold red]Operation cancelled by user.[/bold red]")
        logger.info("Operation cancelled by user")
        exit_code = 1
    finally:
        cluster_client.close()

    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
