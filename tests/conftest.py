"""Shared fixtures for kube-postupgrade tests."""

from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from kubepostupgrade.models import DeploymentReadiness


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def build_certificate(key, not_before, common_name="kube-apiserver", is_ca=False):
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_before + timedelta(days=3650))
    )
    if is_ca:
        builder = builder.add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
    return builder.sign(key, hashes.SHA256())


def key_pem(key) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture
def write_certificate(rsa_key):
    """Write a PEM certificate issued ``age`` ago to ``path``."""

    def _write(path, age=timedelta(days=1), now=None):
        now = now or datetime.now(timezone.utc)
        cert = build_certificate(rsa_key, now - age)
        path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
        return cert

    return _write


@pytest.fixture
def cluster_ca(tmp_path, rsa_key):
    cert_dir = tmp_path / "pki"
    cert_dir.mkdir()
    ca_cert = build_certificate(
        rsa_key, datetime.now(timezone.utc) - timedelta(days=1), common_name="kubernetes", is_ca=True
    )
    (cert_dir / "ca.crt").write_bytes(ca_cert.public_bytes(serialization.Encoding.PEM))
    (cert_dir / "ca.key").write_bytes(key_pem(rsa_key))
    return cert_dir, ca_cert


class FakePhases:
    """Records calls made by the orchestrator and fails on request."""

    def __init__(self, failures=None, readiness=None, self_hosted=False):
        self.calls = []
        self.failures = dict(failures or {})
        self.readiness = list(readiness or [1])
        self.self_hosted = self_hosted
        self.cluster_client = None

    def _record(self, name, *args):
        self.calls.append((name, args))
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    def call_names(self):
        return [name for name, _ in self.calls]

    def args_of(self, name):
        return [args for call_name, args in self.calls if call_name == name]

    def upload_configuration(self, cfg):
        self._record("upload_configuration", cfg)

    def create_or_update_kubelet_config(self, cfg):
        self._record("create_or_update_kubelet_config", cfg)

    def download_kubelet_config(self, version, dest_dir):
        self._record("download_kubelet_config", version, dest_dir)

    def annotate_node_cri_socket(self, node_name, cri_socket):
        self._record("annotate_node_cri_socket", node_name, cri_socket)

    def allow_bootstrap_tokens_to_post_csrs(self):
        self._record("allow_bootstrap_tokens_to_post_csrs")

    def auto_approve_node_bootstrap_tokens(self):
        self._record("auto_approve_node_bootstrap_tokens")

    def auto_approve_node_certificate_rotation(self):
        self._record("auto_approve_node_certificate_rotation")

    def create_cluster_info_rbac_rules(self):
        self._record("create_cluster_info_rbac_rules")

    def get_deployment(self, namespace, name):
        self._record("get_deployment", namespace, name)
        ready = self.readiness.pop(0) if len(self.readiness) > 1 else self.readiness[0]
        return DeploymentReadiness(namespace=namespace, name=name, ready_replicas=ready)

    def delete_deployment_foreground(self, namespace, name):
        self._record("delete_deployment_foreground", namespace, name)

    def ensure_dns_addon(self, cfg):
        self._record("ensure_dns_addon", cfg)

    def ensure_proxy_addon(self, cfg):
        self._record("ensure_proxy_addon", cfg)

    def create_api_server_cert_and_key(self, cfg):
        self._record("create_api_server_cert_and_key", cfg)

    def is_self_hosted(self):
        self.calls.append(("is_self_hosted", ()))
        return self.self_hosted

    def convert_to_self_hosted(self, static_pod_dir, runtime_dir, cfg, waiter, dry_run):
        self._record("convert_to_self_hosted", static_pod_dir, runtime_dir, cfg, waiter, dry_run)
        self.self_hosted = True


@pytest.fixture
def fake_phases_factory():
    return FakePhases
