"""Well-known names, paths and timings used during post-upgrade reconciliation."""

from datetime import timedelta

NAMESPACE_SYSTEM = "kube-system"
NAMESPACE_PUBLIC = "kube-public"

KUBERNETES_DIR = "/etc/kubernetes"
STATIC_POD_DIR = "/etc/kubernetes/manifests"
DEFAULT_CERTIFICATES_DIR = "/etc/kubernetes/pki"
KUBELET_RUN_DIRECTORY = "/var/lib/kubelet"
KUBELET_CONFIG_FILE_NAME = "config.yaml"
DRY_RUN_DIR_PREFIX = "kubeadm-upgrade-dryrun"

DEFAULT_CRI_SOCKET = "/var/run/dockershim.sock"
CRI_SOCKET_ANNOTATION = "kubeadm.alpha.kubernetes.io/cri-socket"

CA_CERT_NAME = "ca.crt"
CA_KEY_NAME = "ca.key"
API_SERVER_CERT_NAME = "apiserver.crt"
API_SERVER_KEY_NAME = "apiserver.key"
API_SERVER_CERT_COMMON_NAME = "kube-apiserver"
EXPIRED_DIR_NAME = "expired"
EXPIRED_DIR_MODE = 0o766

CERTIFICATE_BACKUP_HORIZON = timedelta(days=180)
CERTIFICATE_VALIDITY = timedelta(days=365)

KUBEADM_CONFIG_MAP = "kubeadm-config"
KUBEADM_CONFIG_MAP_KEY = "ClusterConfiguration"
KUBELET_CONFIG_MAP_PREFIX = "kubelet-config-"
KUBELET_CONFIG_MAP_KEY = "kubelet"
CLUSTER_INFO_CONFIG_MAP = "cluster-info"

KUBE_DNS = "kube-dns"
COREDNS = "coredns"
KUBE_PROXY = "kube-proxy"

FEATURE_COREDNS = "CoreDNS"
FEATURE_SELF_HOSTING = "SelfHosting"

SELF_HOSTED_DAEMONSETS = (
    "self-hosted-kube-apiserver",
    "self-hosted-kube-controller-manager",
    "self-hosted-kube-scheduler",
)

DNS_MIGRATION_ATTEMPTS = 10
RETRY_INTERVAL_SECONDS = 5.0
SELF_HOSTING_WAIT_TIMEOUT = timedelta(minutes=30)
WAITER_POLL_SECONDS = 2.0

FIELD_MANAGER = "kube-postupgrade"
