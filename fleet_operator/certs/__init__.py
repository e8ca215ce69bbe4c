"""
Certificate Libraries

Root authority, key pair issuance and trusted bundle aggregation.
"""

from .authority import CertificateManager
from .bundle import TrustedBundle
from .dns import get_service_dns_names
from .keypair import Certificate, CertificateIssuer, CertificateManagementSettings, KeyPair

__all__ = [
    'CertificateManager',
    'TrustedBundle',
    'Certificate',
    'CertificateIssuer',
    'CertificateManagementSettings',
    'KeyPair',
    'get_service_dns_names'
]
