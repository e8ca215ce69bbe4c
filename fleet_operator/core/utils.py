"""
Core Utilities

Common utility functions used across the fleet operator libraries.
"""

import copy
import hashlib
import json
import logging
import re
import urllib3
from typing import Any, Dict, Optional

from .exceptions import ConfigurationError

REDACTED = "***MASKED***"


def setup_logging(debug: bool = False) -> None:
    """
    Set up logging configuration for the operator.

    Args:
        debug: Enable debug logging level
    """
    level = logging.DEBUG if debug else logging.INFO

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Create console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)

    # Create formatter
    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(formatter)

    # Add handler to root logger
    root_logger.addHandler(console_handler)

    if debug:
        logger = logging.getLogger(__name__)
        logger.debug("Debug mode enabled")


def disable_ssl_warnings() -> None:
    """Disable SSL warnings when TLS verification is skipped"""
    urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


def mask_sensitive_info(text: str, token: Optional[str] = None) -> str:
    """
    Mask sensitive information in text for logging and debug output.

    Args:
        text: Text to mask
        token: Token to mask (optional)

    Returns:
        Text with sensitive information masked
    """
    if not text:
        return text

    masked_text = text

    if token and token in masked_text:
        masked_text = masked_text.replace(token, REDACTED)

    # Mask bearer tokens
    masked_text = re.sub(r'Bearer [A-Za-z0-9+/=_.-]+', f'Bearer {REDACTED}', masked_text)

    # Mask PEM private key blocks
    masked_text = re.sub(
        r'-----BEGIN ([A-Z ]*)PRIVATE KEY-----.*?-----END \1PRIVATE KEY-----',
        REDACTED,
        masked_text,
        flags=re.DOTALL,
    )

    return masked_text


def redact_manifest(manifest: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of a manifest that is safe to log.

    Secret ``data`` and ``stringData`` values are replaced with a marker;
    every other field is kept.

    Args:
        manifest: Kubernetes object manifest

    Returns:
        Redacted deep copy of the manifest
    """
    redacted = copy.deepcopy(manifest)
    if redacted.get("kind") == "Secret":
        for field in ("data", "stringData"):
            if isinstance(redacted.get(field), dict):
                redacted[field] = {key: REDACTED for key in redacted[field]}
    return redacted


def compute_hash(value: Any) -> str:
    """
    Compute a SHA-256 hex digest of bytes, text or a JSON-serializable value.

    Mappings are serialized with sorted keys so that logically equal values
    hash identically.
    """
    if isinstance(value, bytes):
        payload = value
    elif isinstance(value, str):
        payload = value.encode("utf-8")
    else:
        payload = json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def validate_namespace(namespace: str) -> bool:
    """
    Validate if the provided string is a valid Kubernetes namespace.

    Args:
        namespace: Kubernetes namespace to validate

    Returns:
        bool: True if valid namespace

    Raises:
        ConfigurationError: If namespace is invalid
    """
    if not namespace or not isinstance(namespace, str):
        raise ConfigurationError("Namespace cannot be empty")

    # Must be lowercase alphanumeric with hyphens, max 63 chars
    if not re.match(r'^[a-z0-9]([-a-z0-9]*[a-z0-9])?$', namespace):
        raise ConfigurationError(f"Invalid Kubernetes namespace format: {namespace}")

    if len(namespace) > 63:
        raise ConfigurationError(f"Namespace too long (max 63 chars): {namespace}")

    return True


def validate_cluster_url(url: str) -> bool:
    """
    Validate if the provided string is a valid Kubernetes API URL.

    Args:
        url: API server URL to validate

    Returns:
        bool: True if valid URL

    Raises:
        ConfigurationError: If URL is invalid
    """
    if not url or not isinstance(url, str):
        raise ConfigurationError("Cluster URL cannot be empty")

    url_pattern = r'^https?:\/\/[a-zA-Z0-9.-]+(?:\:[0-9]+)?(?:\/.*)?$'

    if not re.match(url_pattern, url):
        raise ConfigurationError(f"Invalid cluster URL format: {url}")

    return True
