"""
Kubernetes utilities for the managed identity agent.

The agent talks to two clusters: the hub, where ManagedIdentity resources
and credential secrets live, and the spoke, where ServiceAccounts are created
and tokens are issued. This module builds API clients for both and loads the
spoke trust anchor.
"""

import logging
from pathlib import Path

from kubernetes import client, config

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


def get_kubernetes_client(kubeconfig: str = "") -> client.ApiClient:
    """
    Get a configured Kubernetes API client.

    Args:
        kubeconfig: Path to a kubeconfig file. When empty, in-cluster
            configuration is tried first with the local kubeconfig as fallback.

    Returns:
        Configured Kubernetes API client
    """
    if kubeconfig:
        configuration = client.Configuration()
        config.load_kube_config(
            config_file=kubeconfig, client_configuration=configuration
        )
        logger.debug(f"Loaded Kubernetes configuration from {kubeconfig}")
        return client.ApiClient(configuration)

    try:
        # Try in-cluster config first (when running in a pod)
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            # Fall back to local kubeconfig (for development)
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()


def load_trust_anchor(api_client: client.ApiClient, ca_file: str = "") -> bytes:
    """
    Read the CA bundle that validates the spoke API server.

    Args:
        api_client: Spoke API client
        ca_file: Explicit CA file overriding the client configuration

    Returns:
        CA bundle bytes

    Raises:
        ConfigurationError: If no CA bundle is configured or it cannot be read
    """
    path = ca_file or api_client.configuration.ssl_ca_cert
    if not path:
        raise ConfigurationError(
            "Spoke API client has no CA bundle configured",
            user_action="Set SPOKE_CA_FILE or use a kubeconfig with certificate-authority data",
        )

    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise ConfigurationError(f"Failed to read spoke CA bundle {path}: {e}") from e

    if not data:
        raise ConfigurationError(f"Spoke CA bundle {path} is empty")
    return data
