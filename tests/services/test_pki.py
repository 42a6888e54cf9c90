import ipaddress
import os
import stat
from datetime import datetime, timezone

import pytest
from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID

from kubepostupgrade.errors import PostUpgradeError
from kubepostupgrade.models import ClusterConfiguration
from kubepostupgrade.services.pki import ApiServerCertIssuer


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None


def make_config(cert_dir, **overrides):
    values = {
        "node_name": "master-0",
        "certificates_dir": str(cert_dir),
        "advertise_address": "192.168.0.10",
        "api_server_cert_sans": ("lb.example.com", "10.0.0.5", "master-0"),
    }
    values.update(overrides)
    return ClusterConfiguration(**values)


def test_alt_names_cover_service_names_and_extra_sans(tmp_path):
    names = ApiServerCertIssuer(logger=DummyLogger()).alt_names(make_config(tmp_path))

    dns_names = [name.value for name in names if isinstance(name, x509.DNSName)]
    ips = [name.value for name in names if isinstance(name, x509.IPAddress)]

    assert dns_names == [
        "master-0",
        "kubernetes",
        "kubernetes.default",
        "kubernetes.default.svc",
        "kubernetes.default.svc.cluster.local",
        "lb.example.com",
    ]
    assert ips == [
        ipaddress.ip_address("10.96.0.1"),
        ipaddress.ip_address("192.168.0.10"),
        ipaddress.ip_address("10.0.0.5"),
    ]


def test_issue_signs_serving_certificate_with_cluster_ca(cluster_ca):
    cert_dir, ca_cert = cluster_ca
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    cert, key = ApiServerCertIssuer(logger=DummyLogger()).issue(make_config(cert_dir), now=now)

    assert cert.issuer == ca_cert.subject
    assert cert.not_valid_before_utc == now
    assert cert.public_key().public_numbers() == key.public_key().public_numbers()
    usage = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    assert ExtendedKeyUsageOID.SERVER_AUTH in usage
    sans = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert "kubernetes.default.svc" in sans.get_values_for_type(x509.DNSName)


def test_create_cert_and_key_files_writes_both_files(cluster_ca):
    cert_dir, _ca_cert = cluster_ca

    ApiServerCertIssuer(logger=DummyLogger()).create_cert_and_key_files(make_config(cert_dir))

    cert = x509.load_pem_x509_certificate((cert_dir / "apiserver.crt").read_bytes())
    assert cert.subject.rfc4514_string() == "CN=kube-apiserver"
    assert stat.S_IMODE((cert_dir / "apiserver.key").stat().st_mode) == 0o600


def test_private_key_is_never_readable_by_others(cluster_ca, monkeypatch):
    cert_dir, _ca_cert = cluster_ca
    (cert_dir / "apiserver.key").write_text("stale", encoding="utf-8")
    (cert_dir / "apiserver.key").chmod(0o644)
    modes_before_write = []
    real_fdopen = os.fdopen

    def recording_fdopen(fd, *args, **kwargs):
        modes_before_write.append(stat.S_IMODE(os.fstat(fd).st_mode))
        return real_fdopen(fd, *args, **kwargs)

    monkeypatch.setattr(os, "fdopen", recording_fdopen)
    previous_umask = os.umask(0)
    try:
        ApiServerCertIssuer(logger=DummyLogger()).create_cert_and_key_files(make_config(cert_dir))
    finally:
        os.umask(previous_umask)

    assert modes_before_write == [0o600]
    assert b"PRIVATE KEY" in (cert_dir / "apiserver.key").read_bytes()


def test_create_cert_and_key_files_keeps_existing_pair(cluster_ca):
    cert_dir, _ca_cert = cluster_ca
    (cert_dir / "apiserver.crt").write_text("cert", encoding="utf-8")
    (cert_dir / "apiserver.key").write_text("key", encoding="utf-8")

    ApiServerCertIssuer(logger=DummyLogger()).create_cert_and_key_files(make_config(cert_dir))

    assert (cert_dir / "apiserver.crt").read_text(encoding="utf-8") == "cert"


def test_issue_fails_without_cluster_ca(tmp_path):
    with pytest.raises(PostUpgradeError, match="Cluster CA not found"):
        ApiServerCertIssuer(logger=DummyLogger()).issue(make_config(tmp_path))
