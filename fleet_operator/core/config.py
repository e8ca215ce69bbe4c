"""
Configuration Management

Handles loading the operator settings file and exposing it as an explicit,
immutable naming registry that renderers, the reconciliation engine and the
controllers receive as an argument.
"""

import logging
import yaml
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Any, Optional

from .exceptions import ConfigurationError
from .constants import ErrorMessages
from .utils import validate_namespace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperatorSettings:
    """Names, namespaces and tunables shared by every feature area"""

    operator_namespace: str = "tigera-operator"
    cluster_domain: str = "cluster.local"

    # Certificate authority and trust bundle
    ca_secret_name: str = "tigera-ca-private"
    ca_common_name: str = "tigera-operator-signer"
    trusted_bundle_name: str = "tigera-ca-bundle"
    ca_validity_days: int = 1825
    certificate_validity_days: int = 825
    renewal_threshold_days: int = 90
    key_size: int = 2048

    # Feature areas
    dpi_namespace: str = "tigera-dpi"
    dpi_name: str = "tigera-dpi"
    dpi_es_user_secret: str = "tigera-ee-intrusion-detection-elasticsearch-access"
    es_gateway_namespace: str = "tigera-elasticsearch"
    es_gateway_name: str = "tigera-secure-es-gateway"
    es_gateway_service_name: str = "tigera-secure-es-gateway-http"
    es_gateway_port: int = 9200
    es_gateway_cert_secret: str = "tigera-secure-elasticsearch-cert"
    es_gateway_public_cert_secret: str = "tigera-secure-es-gateway-http-certs-public"
    guardian_namespace: str = "tigera-guardian"
    guardian_name: str = "tigera-guardian"
    guardian_secret_name: str = "tigera-managed-cluster-connection"
    tunnel_secret_name: str = "tigera-management-cluster-connection"
    packet_capture_cert_secret: str = "tigera-packetcapture-server-tls"
    prometheus_tls_secret: str = "calico-node-prometheus-server-tls"
    node_secret_name: str = "node-certs"
    typha_ca_name: str = "typha-ca"
    typha_service_name: str = "calico-typha"
    typha_namespace: str = "calico-system"
    typha_common_name: str = "typha-server"

    # Provider features
    use_psp: bool = False

    # Retry delays (seconds)
    short_retry_seconds: float = 5.0
    license_retry_seconds: float = 10.0
    availability_retry_seconds: float = 30.0
    error_retry_seconds: float = 10.0


class ConfigManager:
    """Manages settings file loading and validation"""

    # Configuration schema - defines expected structure and types
    CONFIG_SCHEMA = {
        'operator': {
            'type': dict,
            'required': False,
            'fields': {
                'namespace': {'type': str, 'required': False, 'validator': validate_namespace,
                              'setting': 'operator_namespace'},
                'clusterDomain': {'type': str, 'required': False, 'setting': 'cluster_domain'},
                'usePSP': {'type': bool, 'required': False, 'setting': 'use_psp'},
            }
        },
        'certificates': {
            'type': dict,
            'required': False,
            'fields': {
                'caSecretName': {'type': str, 'required': False, 'setting': 'ca_secret_name'},
                'caCommonName': {'type': str, 'required': False, 'setting': 'ca_common_name'},
                'trustedBundleName': {'type': str, 'required': False, 'setting': 'trusted_bundle_name'},
                'caValidityDays': {'type': int, 'required': False, 'setting': 'ca_validity_days'},
                'certificateValidityDays': {'type': int, 'required': False,
                                            'setting': 'certificate_validity_days'},
                'renewalThresholdDays': {'type': int, 'required': False,
                                         'setting': 'renewal_threshold_days'},
                'keySize': {'type': int, 'required': False, 'choices': [2048, 3072, 4096],
                            'setting': 'key_size'},
            }
        },
        'components': {
            'type': dict,
            'required': False,
            'fields': {
                'dpiNamespace': {'type': str, 'required': False, 'validator': validate_namespace,
                                 'setting': 'dpi_namespace'},
                'esGatewayNamespace': {'type': str, 'required': False, 'validator': validate_namespace,
                                       'setting': 'es_gateway_namespace'},
                'guardianNamespace': {'type': str, 'required': False, 'validator': validate_namespace,
                                      'setting': 'guardian_namespace'},
            }
        },
        'retry': {
            'type': dict,
            'required': False,
            'fields': {
                'shortSeconds': {'type': (int, float), 'required': False, 'setting': 'short_retry_seconds'},
                'licenseSeconds': {'type': (int, float), 'required': False, 'setting': 'license_retry_seconds'},
                'availabilitySeconds': {'type': (int, float), 'required': False,
                                        'setting': 'availability_retry_seconds'},
                'errorSeconds': {'type': (int, float), 'required': False, 'setting': 'error_retry_seconds'},
            }
        },
        'global': {
            'type': dict,
            'required': False,
            'fields': {
                'debug': {'type': bool, 'required': False},
            }
        },
    }

    def __init__(self):
        """Initialize configuration manager"""
        self.config_data = {}
        self.config_file_path = None

    def load_config(self, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from YAML file

        Args:
            config_path: Path to configuration file

        Returns:
            Dict containing configuration data

        Raises:
            ConfigurationError: If configuration file cannot be loaded or is invalid
        """
        config_file = Path(config_path)

        if not config_file.exists():
            raise ConfigurationError(
                ErrorMessages.ConfigError.CONFIG_FILE_NOT_FOUND.format(config_path=config_path)
            )

        if not config_file.is_file():
            raise ConfigurationError(f"Configuration path is not a file: {config_path}")

        try:
            with open(config_file, 'r') as f:
                self.config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file {config_path}: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to load configuration from {config_path}: {e}")

        self.config_file_path = config_path
        logger.info(f"Successfully loaded configuration from {config_path}")

        # Validate configuration structure
        self._validate_config()

        return self.config_data

    def load_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Load configuration from an already-parsed mapping

        Args:
            data: Configuration data

        Returns:
            Dict containing configuration data
        """
        self.config_data = data or {}
        self.config_file_path = None
        self._validate_config()
        return self.config_data

    def _validate_config(self) -> None:
        """
        Validate configuration structure and values

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if not isinstance(self.config_data, dict):
            raise ConfigurationError("Configuration must be a dictionary")

        unknown = sorted(set(self.config_data) - set(self.CONFIG_SCHEMA))
        if unknown:
            raise ConfigurationError(f"Unknown configuration section(s): {', '.join(unknown)}")

        self._validate_against_schema(self.config_data, self.CONFIG_SCHEMA, "config")

    def _validate_against_schema(self, data: Dict[str, Any], schema: Dict[str, Any], path: str = "") -> None:
        """
        Validate data against schema definition

        Args:
            data: Data to validate
            schema: Schema definition
            path: Current path for error reporting

        Raises:
            ConfigurationError: If data doesn't match schema
        """
        for key, field_schema in schema.items():
            current_path = f"{path}.{key}" if path else key

            if key in data:
                value = data[key]

                # Skip None values for optional fields
                if value is None and not field_schema.get('required', False):
                    continue

                expected_type = field_schema['type']
                # bool is an int subclass; reject it where a number is expected
                if isinstance(value, bool) and expected_type is not bool:
                    raise ConfigurationError(f"{current_path} must be a {self._type_name(expected_type)}")
                if not isinstance(value, expected_type):
                    raise ConfigurationError(f"{current_path} must be a {self._type_name(expected_type)}")

                if 'choices' in field_schema:
                    if value not in field_schema['choices']:
                        choices_str = ', '.join(f"'{c}'" for c in field_schema['choices'])
                        raise ConfigurationError(f"{current_path} must be one of: {choices_str}")

                # Value-level checks such as Kubernetes name syntax
                if 'validator' in field_schema:
                    try:
                        field_schema['validator'](value)
                    except ConfigurationError as e:
                        raise ConfigurationError(f"{current_path}: {e}") from e

                # Recursively validate nested dictionaries
                if expected_type == dict and 'fields' in field_schema:
                    self._validate_against_schema(value, field_schema['fields'], current_path)

            elif field_schema.get('required', False):
                raise ConfigurationError(f"Required field {current_path} is missing")

    @staticmethod
    def _type_name(expected_type) -> str:
        if isinstance(expected_type, tuple):
            return "number"
        return expected_type.__name__

    def get_section(self, section: str) -> Dict[str, Any]:
        """
        Get specific configuration section

        Args:
            section: Section name (e.g., 'operator', 'certificates')

        Returns:
            Dict containing section data, empty dict if section doesn't exist
        """
        return self.config_data.get(section) or {}

    def get_value(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by key

        Args:
            key: Configuration key (supports dot notation like 'operator.namespace')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value = self.config_data

        try:
            for k in key.split('.'):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def to_settings(self, base: Optional[OperatorSettings] = None) -> OperatorSettings:
        """
        Build the settings registry from the loaded configuration

        Args:
            base: Settings to start from (defaults to OperatorSettings())

        Returns:
            OperatorSettings with every configured value applied
        """
        values = {f.name: getattr(base or OperatorSettings(), f.name) for f in fields(OperatorSettings)}

        for section, section_schema in self.CONFIG_SCHEMA.items():
            section_data = self.get_section(section)
            for key, field_schema in section_schema.get('fields', {}).items():
                setting = field_schema.get('setting')
                if setting and section_data.get(key) is not None:
                    values[setting] = section_data[key]

        settings = OperatorSettings(**values)
        logger.debug(f"Resolved operator settings: {settings}")
        return settings

    def generate_config_template(self, output_dir: Optional[str] = None) -> str:
        """
        Generate configuration template file

        Args:
            output_dir: Directory to write the template to (defaults to current directory)

        Returns:
            str: Path to generated template file
        """
        defaults = OperatorSettings()
        template = {}
        for section, section_schema in self.CONFIG_SCHEMA.items():
            section_values = {}
            for key, field_schema in section_schema.get('fields', {}).items():
                setting = field_schema.get('setting')
                section_values[key] = getattr(defaults, setting) if setting else False
            template[section] = section_values

        target_dir = Path(output_dir) if output_dir else Path.cwd()
        target_dir.mkdir(parents=True, exist_ok=True)
        template_path = target_dir / "fleet-operator-config.yaml"

        with open(template_path, 'w') as f:
            f.write("# Fleet operator settings\n")
            yaml.safe_dump(template, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Configuration template written to {template_path}")
        return str(template_path)
