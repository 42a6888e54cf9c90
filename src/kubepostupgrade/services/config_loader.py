"""Configuration loader for kube-postupgrade."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from kubepostupgrade.errors import PostUpgradeError
from kubepostupgrade.models import ClusterConfiguration


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults and the cluster settings."""

    CLI_KEYS = {
        "version",
        "kubeconfig",
        "context",
        "dry_run",
        "verbose",
        "log_file",
        "report_file",
    }
    CLUSTER_KEYS = {
        "node_name",
        "cri_socket",
        "feature_gates",
        "certificates_dir",
        "kubernetes_version",
        "api_server_cert_sans",
        "advertise_address",
        "service_subnet",
        "dns_domain",
        "kubelet_config",
        "addon_manifests_dir",
    }
    SUPPORTED_KEYS = CLI_KEYS | CLUSTER_KEYS

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise PostUpgradeError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise PostUpgradeError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise PostUpgradeError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise PostUpgradeError(f"Unknown configuration keys: {unknown_list}")

        return parsed

    def build_cluster_configuration(self, values: Dict[str, Any], **overrides: Any) -> ClusterConfiguration:
        settings = {key: value for key, value in values.items() if key in self.CLUSTER_KEYS}
        settings.update({key: value for key, value in overrides.items() if value is not None})

        for key in ("feature_gates", "kubelet_config"):
            if key in settings and not isinstance(settings[key], dict):
                raise PostUpgradeError(f"`{key}` must be a mapping.")

        if "feature_gates" in settings:
            gates = settings["feature_gates"]
            bad = sorted(name for name, enabled in gates.items() if not isinstance(enabled, bool))
            if bad:
                raise PostUpgradeError(f"Feature gates must be true or false: {', '.join(bad)}")

        if "api_server_cert_sans" in settings:
            sans = settings["api_server_cert_sans"]
            if not isinstance(sans, list) or not all(isinstance(san, str) for san in sans):
                raise PostUpgradeError("`api_server_cert_sans` must be a list of strings.")
            settings["api_server_cert_sans"] = tuple(sans)

        for key in ("kubernetes_version", "node_name"):
            if key in settings:
                settings[key] = str(settings[key])

        return ClusterConfiguration(**settings)
