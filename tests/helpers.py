"""
Shared Test Helpers

Constants and manifest/certificate builders used across the test suites.
"""

import base64

from fleet_operator.certs import tls
from fleet_operator.certs.keypair import CertificateIssuer, KeyPair


class FleetTestConstants:
    """Constants shared across all test suites"""

    OPERATOR_NAMESPACE = "tigera-operator"
    PULL_SECRET = "tigera-pull-secret"
    EXAMPLE_URL = "https://api.example.com:6443"
    MANAGEMENT_ADDRESS = "management.example.com:9449"
    SERVICE_DNS_NAMES = ["svc-a", "svc-a.ns", "svc-a.ns.svc", "svc-a.ns.svc.cluster.local"]


def make_secret(name, namespace, data=None, **metadata):
    """Opaque secret manifest with base64 encoded data"""
    encoded = {key: base64.b64encode(value.encode("utf-8")).decode("ascii")
               for key, value in (data or {}).items()}
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": dict(metadata, name=name, namespace=namespace),
        "data": encoded,
    }


def self_signed_key_pair(name, namespace, dns_names=("example.local",), issuer=CertificateIssuer.OPERATOR):
    """Key pair signed by its own key, outside any CA"""
    key = tls.generate_private_key(2048)
    certificate = tls.issue_certificate(key, list(dns_names), 30)
    return KeyPair(
        name=name,
        namespace=namespace,
        certificate_pem=tls.certificate_to_pem(certificate),
        private_key_pem=tls.private_key_to_pem(key),
        dns_names=tuple(dns_names),
        issuer=issuer,
    )


def self_signed_certificate(name, namespace, dns_name="example.local"):
    return self_signed_key_pair(name, namespace, (dns_name,)).certificate()


class FakeClock:
    """Monotonic clock that only moves when told to"""

    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
