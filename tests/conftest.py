"""
Shared Test Fixtures

In-memory cluster, settings registry and certificate material reused
across the test suites.
"""

import pytest

from fleet_operator.certs.authority import CertificateManager
from fleet_operator.core.config import OperatorSettings
from fleet_operator.core.memory import InMemoryClusterClient
from fleet_operator.render.common import InstallationSpec

from helpers import FleetTestConstants, make_secret, self_signed_certificate


@pytest.fixture
def settings():
    return OperatorSettings()


@pytest.fixture
def client():
    return InMemoryClusterClient()


@pytest.fixture
def installation():
    return InstallationSpec(control_plane_replicas=1, image_pull_secrets=(FleetTestConstants.PULL_SECRET,))


@pytest.fixture
def certificate_manager(client, settings):
    return CertificateManager(client, settings)


@pytest.fixture
def pull_secret():
    return make_secret(FleetTestConstants.PULL_SECRET, FleetTestConstants.OPERATOR_NAMESPACE,
                       {".dockerconfigjson": "{}"})


@pytest.fixture
def external_ca_certificate():
    return self_signed_certificate("external-ca", FleetTestConstants.OPERATOR_NAMESPACE, "external-ca")
