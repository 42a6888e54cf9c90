"""Kubernetes-backed implementations of the reconciliation phases."""

import ipaddress
import os
from string import Template
from typing import Any, Callable, Dict, List, Optional

import yaml
from packaging.version import Version

from kubepostupgrade.constants import (
    CLUSTER_INFO_CONFIG_MAP,
    COREDNS,
    CRI_SOCKET_ANNOTATION,
    FEATURE_COREDNS,
    KUBE_DNS,
    KUBE_PROXY,
    KUBEADM_CONFIG_MAP,
    KUBEADM_CONFIG_MAP_KEY,
    KUBELET_CONFIG_FILE_NAME,
    KUBELET_CONFIG_MAP_KEY,
    KUBELET_CONFIG_MAP_PREFIX,
    NAMESPACE_PUBLIC,
    NAMESPACE_SYSTEM,
    SELF_HOSTED_DAEMONSETS,
)
from kubepostupgrade.errors import PostUpgradeError
from kubepostupgrade.errors_catalog import actionable_error
from kubepostupgrade.models import ClusterConfiguration, DeploymentReadiness

BOOTSTRAP_TOKEN_GROUP = "system:bootstrappers:kubeadm:default-node-token"
NODES_GROUP = "system:nodes"
CLUSTER_INFO_ROLE = "kubeadm:bootstrap-signer-clusterinfo"

# step key -> (binding name, cluster role, subject group)
NODE_BOOTSTRAP_BINDINGS = {
    "post_csrs": (
        "kubeadm:kubelet-bootstrap",
        "system:node-bootstrapper",
        BOOTSTRAP_TOKEN_GROUP,
    ),
    "auto_approve_bootstrap": (
        "kubeadm:node-autoapprove-bootstrap",
        "system:certificates.k8s.io:certificatesigningrequests:nodeclient",
        BOOTSTRAP_TOKEN_GROUP,
    ),
    "auto_approve_rotation": (
        "kubeadm:node-autoapprove-certificate-rotation",
        "system:certificates.k8s.io:certificatesigningrequests:selfnodeclient",
        NODES_GROUP,
    ),
}


def kubelet_config_map_name(kubernetes_version: Version) -> str:
    return f"{KUBELET_CONFIG_MAP_PREFIX}{kubernetes_version.major}.{kubernetes_version.minor}"


class ClusterPhases:
    """Performs the individual cluster mutations the orchestrator sequences."""

    def __init__(
        self,
        cluster_client,
        filesystem_service,
        cert_issuer,
        logger,
        self_hosting_converter: Optional[Callable] = None,
    ):
        self.cluster_client = cluster_client
        self.filesystem_service = filesystem_service
        self.cert_issuer = cert_issuer
        self.logger = logger
        self.self_hosting_converter = self_hosting_converter

    # Configuration records

    def upload_configuration(self, cfg: ClusterConfiguration):
        content = yaml.safe_dump(cfg.to_dict(), default_flow_style=False, sort_keys=True)
        self.cluster_client.create_or_update_config_map(
            NAMESPACE_SYSTEM, KUBEADM_CONFIG_MAP, {KUBEADM_CONFIG_MAP_KEY: content}
        )
        self.logger.info("Stored the configuration in ConfigMap %s", KUBEADM_CONFIG_MAP)

    def create_or_update_kubelet_config(self, cfg: ClusterConfiguration):
        if not cfg.kubernetes_version:
            raise PostUpgradeError("kubernetes_version is not set in the cluster configuration")
        name = kubelet_config_map_name(Version(cfg.kubernetes_version))
        content = yaml.safe_dump(dict(cfg.kubelet_config), default_flow_style=False, sort_keys=True)
        self.cluster_client.create_or_update_config_map(
            NAMESPACE_SYSTEM, name, {KUBELET_CONFIG_MAP_KEY: content}
        )
        self.logger.info("Stored the kubelet configuration in ConfigMap %s", name)

    def download_kubelet_config(self, kubernetes_version: Version, dest_dir: str) -> str:
        name = kubelet_config_map_name(kubernetes_version)
        data = self.cluster_client.get_config_map_data(NAMESPACE_SYSTEM, name)
        if KUBELET_CONFIG_MAP_KEY not in data:
            raise PostUpgradeError(f"no {KUBELET_CONFIG_MAP_KEY!r} key in ConfigMap {name}")

        path = os.path.join(dest_dir, KUBELET_CONFIG_FILE_NAME)
        self.filesystem_service.write_file(path, data[KUBELET_CONFIG_MAP_KEY])
        self.logger.info("Wrote kubelet configuration to %s", path)
        return path

    def annotate_node_cri_socket(self, node_name: str, cri_socket: str):
        self.cluster_client.patch_node_annotations(node_name, {CRI_SOCKET_ANNOTATION: cri_socket})

    # RBAC

    def _bind_group_to_cluster_role(self, binding_key: str):
        binding_name, role_name, group = NODE_BOOTSTRAP_BINDINGS[binding_key]
        self.cluster_client.create_or_update_cluster_role_binding(
            {
                "apiVersion": "rbac.authorization.k8s.io/v1",
                "kind": "ClusterRoleBinding",
                "metadata": {"name": binding_name},
                "roleRef": {
                    "apiGroup": "rbac.authorization.k8s.io",
                    "kind": "ClusterRole",
                    "name": role_name,
                },
                "subjects": [
                    {"apiGroup": "rbac.authorization.k8s.io", "kind": "Group", "name": group}
                ],
            }
        )

    def allow_bootstrap_tokens_to_post_csrs(self):
        self._bind_group_to_cluster_role("post_csrs")

    def auto_approve_node_bootstrap_tokens(self):
        self._bind_group_to_cluster_role("auto_approve_bootstrap")

    def auto_approve_node_certificate_rotation(self):
        self._bind_group_to_cluster_role("auto_approve_rotation")

    def create_cluster_info_rbac_rules(self):
        self.cluster_client.create_or_update_role(
            NAMESPACE_PUBLIC,
            {
                "apiVersion": "rbac.authorization.k8s.io/v1",
                "kind": "Role",
                "metadata": {"name": CLUSTER_INFO_ROLE, "namespace": NAMESPACE_PUBLIC},
                "rules": [
                    {
                        "apiGroups": [""],
                        "resources": ["configmaps"],
                        "resourceNames": [CLUSTER_INFO_CONFIG_MAP],
                        "verbs": ["get"],
                    }
                ],
            },
        )
        self.cluster_client.create_or_update_role_binding(
            NAMESPACE_PUBLIC,
            {
                "apiVersion": "rbac.authorization.k8s.io/v1",
                "kind": "RoleBinding",
                "metadata": {"name": CLUSTER_INFO_ROLE, "namespace": NAMESPACE_PUBLIC},
                "roleRef": {
                    "apiGroup": "rbac.authorization.k8s.io",
                    "kind": "Role",
                    "name": CLUSTER_INFO_ROLE,
                },
                "subjects": [
                    {"apiGroup": "rbac.authorization.k8s.io", "kind": "User", "name": "system:anonymous"}
                ],
            },
        )

    # Deployments

    def get_deployment(self, namespace: str, name: str) -> DeploymentReadiness:
        return self.cluster_client.get_deployment_readiness(namespace, name)

    def delete_deployment_foreground(self, namespace: str, name: str):
        self.cluster_client.delete_deployment_foreground(namespace, name)

    # Add-ons

    @staticmethod
    def manifest_variables(cfg: ClusterConfiguration) -> Dict[str, str]:
        subnet = ipaddress.ip_network(cfg.service_subnet, strict=False)
        return {
            "KUBERNETES_VERSION": cfg.kubernetes_version or "",
            "DNS_DOMAIN": cfg.dns_domain,
            "DNS_SERVER_IP": str(subnet[10]),
            "SERVICE_SUBNET": cfg.service_subnet,
        }

    def load_addon_manifest(self, cfg: ClusterConfiguration, addon: str) -> List[Dict[str, Any]]:
        path = os.path.join(cfg.addon_manifests_dir or "", f"{addon}.yaml")
        if not cfg.addon_manifests_dir or not os.path.isfile(path):
            raise PostUpgradeError(actionable_error("addon_manifest_missing", path=path, addon=addon))

        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                rendered = Template(file_obj.read()).safe_substitute(self.manifest_variables(cfg))
            documents = [doc for doc in yaml.safe_load_all(rendered) if doc]
        except (OSError, yaml.YAMLError) as exc:
            raise PostUpgradeError(f"Invalid {addon} manifest '{path}': {exc}") from exc

        for document in documents:
            if not isinstance(document, dict) or "kind" not in document:
                raise PostUpgradeError(f"Invalid {addon} manifest '{path}': every document needs a kind")
        return documents

    def _apply_addon(self, cfg: ClusterConfiguration, addon: str):
        for document in self.load_addon_manifest(cfg, addon):
            self.cluster_client.apply(document)
        self.logger.info("Applied essential addon: %s", addon)

    def ensure_dns_addon(self, cfg: ClusterConfiguration):
        self._apply_addon(cfg, COREDNS if cfg.feature_enabled(FEATURE_COREDNS) else KUBE_DNS)

    def ensure_proxy_addon(self, cfg: ClusterConfiguration):
        self._apply_addon(cfg, KUBE_PROXY)

    # Certificates and control plane

    def create_api_server_cert_and_key(self, cfg: ClusterConfiguration):
        self.cert_issuer.create_cert_and_key_files(cfg)

    def is_self_hosted(self) -> bool:
        return all(
            self.cluster_client.daemonset_exists(NAMESPACE_SYSTEM, name) for name in SELF_HOSTED_DAEMONSETS
        )

    def convert_to_self_hosted(self, static_pod_dir: str, runtime_dir: str, cfg, waiter, dry_run: bool):
        if self.self_hosting_converter is None:
            raise PostUpgradeError(actionable_error("self_hosting_unavailable"))
        self.self_hosting_converter(
            static_pod_dir, runtime_dir, cfg, self.cluster_client, waiter, dry_run
        )
