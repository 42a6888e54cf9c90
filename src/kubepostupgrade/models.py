"""Shared domain models for kube-postupgrade."""

import socket
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from packaging.version import Version

from .constants import DEFAULT_CERTIFICATES_DIR, DEFAULT_CRI_SOCKET

FileMoveSet = Mapping[str, str]


@dataclass(frozen=True)
class ClusterConfiguration:
    """Cluster settings the reconciliation steps read but never change."""

    node_name: str = field(default_factory=socket.gethostname)
    cri_socket: str = DEFAULT_CRI_SOCKET
    feature_gates: Mapping[str, bool] = field(default_factory=dict)
    certificates_dir: str = DEFAULT_CERTIFICATES_DIR
    kubernetes_version: Optional[str] = None
    api_server_cert_sans: Tuple[str, ...] = ()
    advertise_address: Optional[str] = None
    service_subnet: str = "10.96.0.0/12"
    dns_domain: str = "cluster.local"
    kubelet_config: Mapping[str, Any] = field(default_factory=dict)
    addon_manifests_dir: Optional[str] = None

    def feature_enabled(self, name: str) -> bool:
        return bool(self.feature_gates.get(name, False))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["feature_gates"] = dict(self.feature_gates)
        data["kubelet_config"] = dict(self.kubelet_config)
        data["api_server_cert_sans"] = list(self.api_server_cert_sans)
        return data


@dataclass(frozen=True)
class UpgradeContext:
    """Per-run input of the orchestrator."""

    phases: Any
    cluster_config: ClusterConfiguration
    target_version: Version
    dry_run: bool = False
    events: Any = None


@dataclass(frozen=True)
class CertificateRecord:
    subject: str
    not_before: datetime
    not_after: datetime


@dataclass(frozen=True)
class DeploymentReadiness:
    namespace: str
    name: str
    ready_replicas: int = 0
