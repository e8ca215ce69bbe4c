"""
Constants Module

Centralized constants for the fleet operator to eliminate magic strings
and improve maintainability.
"""


class KubernetesConstants:
    """Kubernetes-related constants with enum-based structure"""

    from enum import Enum

    # API Group constants
    CORE_API_GROUP = ""  # Core API group (empty string)
    APPS_API_GROUP = "apps"
    RBAC_API_GROUP = "rbac.authorization.k8s.io"
    CERTIFICATES_API_GROUP = "certificates.k8s.io"
    POLICY_API_GROUP = "policy"
    OPERATOR_API_GROUP = "operator.tigera.io"
    PROJECTCALICO_API_GROUP = "projectcalico.org"
    CRD_PROJECTCALICO_API_GROUP = "crd.projectcalico.org"

    # API versions
    CORE_API_VERSION = "v1"
    APPS_API_VERSION = "apps/v1"
    RBAC_API_VERSION = f"{RBAC_API_GROUP}/v1"
    OPERATOR_API_VERSION = f"{OPERATOR_API_GROUP}/v1"
    PROJECTCALICO_API_VERSION = f"{PROJECTCALICO_API_GROUP}/v3"

    # Label constants - standard Kubernetes labels
    MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
    NAME_LABEL = "app.kubernetes.io/name"
    K8S_APP_LABEL = "k8s-app"
    HOSTNAME_TOPOLOGY_KEY = "kubernetes.io/hostname"
    OS_LABEL = "kubernetes.io/os"

    # Field set of the manifest the operator last applied to an object
    APPLIED_FIELDS_ANNOTATION = "operator.fleet.io/applied-fields"

    # Pod security admission labels
    PSS_ENFORCE_LABEL = "pod-security.kubernetes.io/enforce"
    PSS_ENFORCE_VERSION_LABEL = "pod-security.kubernetes.io/enforce-version"

    # Component constants
    OPERATOR_COMPONENT = "fleet-operator"

    # Secret data keys
    TLS_CERT_KEY = "tls.crt"
    TLS_PRIVATE_KEY = "tls.key"
    TLS_SECRET_TYPE = "kubernetes.io/tls"

    class Kind(str, Enum):
        """Resource kinds rendered and reconciled by the operator"""
        NAMESPACE = "Namespace"
        SECRET = "Secret"
        CONFIG_MAP = "ConfigMap"
        SERVICE_ACCOUNT = "ServiceAccount"
        CLUSTER_ROLE = "ClusterRole"
        ROLE = "Role"
        CLUSTER_ROLE_BINDING = "ClusterRoleBinding"
        ROLE_BINDING = "RoleBinding"
        SERVICE = "Service"
        DEPLOYMENT = "Deployment"
        DAEMON_SET = "DaemonSet"
        STATEFUL_SET = "StatefulSet"

        def __str__(self) -> str:
            """Return the kind value for use in manifests"""
            return self.value

        @classmethod
        def get_cluster_scoped_kinds(cls) -> list:
            """Get kinds that are not namespaced"""
            return [cls.NAMESPACE, cls.CLUSTER_ROLE, cls.CLUSTER_ROLE_BINDING]

        @classmethod
        def get_workload_kinds(cls) -> list:
            """Get kinds that own pod templates"""
            return [cls.DEPLOYMENT, cls.DAEMON_SET, cls.STATEFUL_SET]

    class RBACVerb(str, Enum):
        """RBAC verbs used in Kubernetes role definitions"""
        CREATE = "create"
        GET = "get"
        LIST = "list"
        WATCH = "watch"
        UPDATE = "update"
        PATCH = "patch"
        DELETE = "delete"
        USE = "use"

        def __str__(self) -> str:
            """Return the verb value for use in RBAC rules"""
            return self.value

        @classmethod
        def get_read_verbs(cls) -> list:
            """Get all read-only RBAC verbs"""
            return [cls.GET, cls.LIST, cls.WATCH]


class OperatorConstants:
    """Custom resources consumed by the feature controllers"""

    from enum import Enum

    DEFAULT_INSTANCE_NAME = "default"
    TIGERA_SECURE_VARIANT = "TigeraSecureEnterprise"
    CALICO_VARIANT = "Calico"

    class Resource(str, Enum):
        """Inbound custom resource kinds"""
        INSTALLATION = "Installation"
        INTRUSION_DETECTION = "IntrusionDetection"
        MANAGEMENT_CLUSTER = "ManagementCluster"
        MANAGEMENT_CLUSTER_CONNECTION = "ManagementClusterConnection"
        LICENSE_KEY = "LicenseKey"
        DEEP_PACKET_INSPECTION = "DeepPacketInspection"

        def __str__(self) -> str:
            """Return the kind value for use in API calls"""
            return self.value

    class Feature(str, Enum):
        """License feature names"""
        INTRUSION_DETECTION = "threat-defense"
        DEEP_PACKET_INSPECTION = "dpi"
        MULTI_CLUSTER_MANAGEMENT = "multi-cluster-management"

        def __str__(self) -> str:
            """Return the feature name as it appears in the license"""
            return self.value


class CertificateConstants:
    """TLS material related constants"""

    HASH_ANNOTATION_PREFIX = "hash.operator.fleet.io/"
    TRUSTED_BUNDLE_ANNOTATION = "hash.operator.fleet.io/trusted-bundle"

    TRUSTED_BUNDLE_KEY = "ca-bundle.crt"
    TRUSTED_BUNDLE_VOLUME_MOUNT_DIR = "/etc/pki/tls/certs"

    CSR_SIGNER_NAME = "tigera.io/operator-signer"
    CSR_CLUSTER_ROLE_NAME = "fleet-csr-creator"
    CSR_INIT_CONTAINER_NAME = "key-cert-provisioner"

    DEFAULT_KEY_SIZE = 2048
    DEFAULT_KEY_ALGORITHM = "RSAWithSize2048"
    DEFAULT_SIGNATURE_ALGORITHM = "SHA256WithRSA"


class ErrorMessages:
    """Centralized error message templates with enum-based structure"""

    from enum import Enum

    class InputError(str, Enum):
        """Input-not-ready message templates"""
        LICENSE_NOT_READY = "Waiting for LicenseKeyAPI to be ready"
        LICENSE_NOT_FOUND = "License not found"
        INSTALLATION_NOT_FOUND = "Installation not found"
        INSTALLATION_NOT_READY = "Waiting for Installation to be ready"
        SECRET_NOT_AVAILABLE = "Waiting for secret '{name}' to become available"
        FEATURE_NOT_ACTIVE = "Feature is not active - License does not support this feature"

        def __str__(self) -> str:
            """Return the error message template"""
            return self.value

    class ConfigError(str, Enum):
        """Configuration-invalid message templates"""
        MANAGEMENT_CLUSTER_CONFLICT = (
            "having both a ManagementCluster and a ManagementClusterConnection is not supported"
        )
        MISSING_CONNECTION = "a ManagementClusterConnection is required to render the guardian"
        MISSING_KEY_PAIR = "configuration for {component} is missing key pair '{name}'"
        MISSING_BUNDLE = "configuration for {component} is missing a trusted bundle"
        INVALID_REPLICAS = "control plane replicas must be at least 1, got {replicas}"
        DUPLICATE_IDENTITY = "resource {identity} is rendered more than once"
        OVERLAPPING_IDENTITY = "resource {identity} is in both the create and delete sets"
        DEPENDENCY_ORDER = "resource {identity} is rendered before a dependency of a lower tier"
        UNKNOWN_CONFIGURATION = "no renderer registered for configuration type {type_name}"
        CONFIG_FILE_NOT_FOUND = "Configuration file not found: {config_path}"

        def __str__(self) -> str:
            """Return the error message template"""
            return self.value

    class AuthorityError(str, Enum):
        """Certificate authority message templates"""
        PROVISIONING_FAILED = "Unable to create the operator CA: {error}"
        MISSING_CA_CERT = "certificate management is configured without a CA certificate"
        INVALID_CA_SECRET = "CA secret {namespace}/{name} does not hold a valid key pair"

        def __str__(self) -> str:
            """Return the error message template"""
            return self.value

    class ApplyError(str, Enum):
        """Reconciliation message templates"""
        BATCH_FAILED = "Error creating / updating / deleting resource: {count} operation(s) failed"

        def __str__(self) -> str:
            """Return the error message template"""
            return self.value
