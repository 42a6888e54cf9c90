"""API server certificate issuance signed by the cluster CA."""

import ipaddress
import os
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from kubepostupgrade.constants import (
    API_SERVER_CERT_COMMON_NAME,
    API_SERVER_CERT_NAME,
    API_SERVER_KEY_NAME,
    CA_CERT_NAME,
    CA_KEY_NAME,
    CERTIFICATE_VALIDITY,
)
from kubepostupgrade.errors import PostUpgradeError
from kubepostupgrade.errors_catalog import actionable_error
from kubepostupgrade.models import ClusterConfiguration

KEY_SIZE = 2048
PRIVATE_KEY_MODE = 0o600


class ApiServerCertIssuer:
    """Writes a CA-signed serving certificate for the API server."""

    def __init__(self, logger, key_size: int = KEY_SIZE):
        self.logger = logger
        self.key_size = key_size

    def alt_names(self, cfg: ClusterConfiguration) -> List[x509.GeneralName]:
        dns_names = [
            cfg.node_name,
            "kubernetes",
            "kubernetes.default",
            "kubernetes.default.svc",
            f"kubernetes.default.svc.{cfg.dns_domain}",
        ]
        ips = [ipaddress.ip_network(cfg.service_subnet, strict=False)[1]]
        if cfg.advertise_address:
            ips.append(ipaddress.ip_address(cfg.advertise_address))

        for san in cfg.api_server_cert_sans:
            try:
                ips.append(ipaddress.ip_address(san))
            except ValueError:
                dns_names.append(san)

        names: List[x509.GeneralName] = []
        for name in dict.fromkeys(dns_names):
            names.append(x509.DNSName(name))
        for ip in dict.fromkeys(ips):
            names.append(x509.IPAddress(ip))
        return names

    def load_ca(self, cert_dir: str) -> Tuple[x509.Certificate, object]:
        cert_path = os.path.join(cert_dir, CA_CERT_NAME)
        key_path = os.path.join(cert_dir, CA_KEY_NAME)
        try:
            with open(cert_path, "rb") as file_obj:
                ca_cert = x509.load_pem_x509_certificate(file_obj.read())
            with open(key_path, "rb") as file_obj:
                ca_key = serialization.load_pem_private_key(file_obj.read(), password=None)
        except FileNotFoundError as exc:
            raise PostUpgradeError(actionable_error("ca_missing", path=cert_dir)) from exc
        except (OSError, ValueError) as exc:
            raise PostUpgradeError(f"Couldn't load the cluster CA from {cert_dir}: {exc}") from exc
        return ca_cert, ca_key

    def issue(
        self,
        cfg: ClusterConfiguration,
        now: Optional[datetime] = None,
    ) -> Tuple[x509.Certificate, rsa.RSAPrivateKey]:
        ca_cert, ca_key = self.load_ca(cfg.certificates_dir)
        now = now or datetime.now(timezone.utc)
        key = rsa.generate_private_key(public_exponent=65537, key_size=self.key_size)

        cert = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, API_SERVER_CERT_COMMON_NAME)]))
            .issuer_name(ca_cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + CERTIFICATE_VALIDITY)
            .add_extension(x509.SubjectAlternativeName(self.alt_names(cfg)), critical=False)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
            .sign(ca_key, hashes.SHA256())
        )
        return cert, key

    def create_cert_and_key_files(self, cfg: ClusterConfiguration):
        cert_path = os.path.join(cfg.certificates_dir, API_SERVER_CERT_NAME)
        key_path = os.path.join(cfg.certificates_dir, API_SERVER_KEY_NAME)

        if os.path.exists(cert_path) and os.path.exists(key_path):
            self.logger.info("Using the existing API server certificate and key in %s", cfg.certificates_dir)
            return

        cert, key = self.issue(cfg)
        key_bytes = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
        try:
            fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, PRIVATE_KEY_MODE)
            os.fchmod(fd, PRIVATE_KEY_MODE)
            with os.fdopen(fd, "wb") as file_obj:
                file_obj.write(key_bytes)
            with open(cert_path, "wb") as file_obj:
                file_obj.write(cert.public_bytes(serialization.Encoding.PEM))
        except OSError as exc:
            raise PostUpgradeError(f"failure while saving API server certificate and key: {exc}") from exc

        self.logger.info("Generated API server certificate and key in %s", cfg.certificates_dir)
