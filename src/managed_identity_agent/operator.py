#!/usr/bin/env python3
"""
Managed Identity Agent - Main entry point for the Kopf-based agent.

The agent runs next to a managed (spoke) cluster. It watches ManagedIdentity
resources in the cluster's namespace on the hub, keeps a ServiceAccount for
each of them on the spoke and publishes a fresh token for it into a hub
secret.

Usage:
    python -m managed_identity_agent.operator
    # Or with kopf directly:
    kopf run -m managed_identity_agent.operator --namespace <cluster-name>

Environment Variables:
    CLUSTER_NAME: Name of the managed cluster (its hub namespace is watched)
    HUB_KUBECONFIG / SPOKE_KUBECONFIG: Kubeconfigs of both clusters
    SPOKE_NAMESPACE: Spoke namespace for the ServiceAccounts
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
"""

import logging
import sys
from datetime import timedelta
from typing import Any

import kopf
from kubernetes import client

# Import handler modules to register them with kopf
from managed_identity_agent.handlers import managed_identity  # noqa: F401
from managed_identity_agent.errors import ConfigurationError
from managed_identity_agent.observability.logging import setup_structured_logging
from managed_identity_agent.observability.metrics import MetricsServer
from managed_identity_agent.services import StatusReporter, TokenReconciler
from managed_identity_agent.settings import settings as agent_settings
from managed_identity_agent.utils import (
    CredentialStore,
    ManagedIdentityStore,
    PrincipalManager,
    RefreshScheduler,
    TokenIssuer,
    TokenValidator,
)
from managed_identity_agent.utils.kubernetes import (
    get_kubernetes_client,
    load_trust_anchor,
)

# Global reference to metrics server for cleanup
_global_metrics_server: MetricsServer | None = None


def configure_logging() -> None:
    """Configure structured logging for the agent based on agent_settings."""
    setup_structured_logging(
        log_level=agent_settings.log_level.upper(),
        enable_json_formatting=agent_settings.json_logs,
        correlation_id_enabled=agent_settings.correlation_ids,
    )


def build_reconciler(
    hub_client: client.ApiClient,
    spoke_client: client.ApiClient,
    trust_anchor: bytes,
) -> TokenReconciler:
    """
    Wire the reconciler and its collaborators from settings.

    Args:
        hub_client: API client for the hub cluster
        spoke_client: API client for the spoke cluster
        trust_anchor: Spoke CA bundle

    Returns:
        Ready to use TokenReconciler
    """
    timeout = agent_settings.request_timeout_seconds
    identity_store = ManagedIdentityStore(hub_client, request_timeout=timeout)
    scheduler = RefreshScheduler(
        refresh_fraction=agent_settings.refresh_fraction,
        poll_buffer=timedelta(seconds=agent_settings.refresh_buffer_seconds),
    )
    return TokenReconciler(
        identity_store=identity_store,
        principal_manager=PrincipalManager(spoke_client, request_timeout=timeout),
        token_validator=TokenValidator(
            spoke_client, agent_settings.audiences, request_timeout=timeout
        ),
        token_issuer=TokenIssuer(
            spoke_client, agent_settings.audiences, request_timeout=timeout
        ),
        credential_store=CredentialStore(hub_client, request_timeout=timeout),
        status_reporter=StatusReporter(identity_store),
        spoke_namespace=agent_settings.spoke_namespace,
        trust_anchor=trust_anchor,
        scheduler=scheduler,
    )


def connection_info(api_client: client.ApiClient) -> kopf.ConnectionInfo:
    """Translate a kubernetes client configuration into kopf credentials."""
    configuration = api_client.configuration
    scheme = token = None
    api_key = configuration.api_key or {}
    header = api_key.get("authorization") or api_key.get("BearerToken")
    if header:
        scheme, _, token = header.partition(" ")
        if not token:
            scheme, token = "Bearer", scheme

    return kopf.ConnectionInfo(
        server=configuration.host,
        ca_path=configuration.ssl_ca_cert,
        insecure=not configuration.verify_ssl,
        username=configuration.username or None,
        password=configuration.password or None,
        scheme=scheme,
        token=token,
        certificate_path=configuration.cert_file,
        private_key_path=configuration.key_file,
    )


@kopf.on.login()
def login_handler(**kwargs: Any) -> kopf.ConnectionInfo | None:
    """Authenticate kopf against the hub cluster."""
    if not agent_settings.hub_kubeconfig:
        return kopf.login_via_client(**kwargs)
    logging.info(f"Logging in to the hub with {agent_settings.hub_kubeconfig}")
    return connection_info(get_kubernetes_client(agent_settings.hub_kubeconfig))


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, memo: kopf.Memo, **_
) -> None:
    """
    Agent startup configuration.

    Builds hub and spoke clients, loads the spoke trust anchor, wires the
    reconciler into the memo shared with all handlers and starts the metrics
    endpoint.
    """
    logging.info("Starting Managed Identity Agent...")
    settings.watching.reconnect_backoff = 1.0  # Reconnect delay
    settings.posting.enabled = False  # No Kubernetes events from handler logs

    if not agent_settings.cluster_name:
        raise ConfigurationError(
            "CLUSTER_NAME is required but not configured",
            user_action="Set CLUSTER_NAME to the name of this managed cluster",
        ).as_kopf_error()

    try:
        hub_client = get_kubernetes_client(agent_settings.hub_kubeconfig)
        spoke_client = get_kubernetes_client(agent_settings.spoke_kubeconfig)
        trust_anchor = load_trust_anchor(spoke_client, agent_settings.spoke_ca_file)
    except ConfigurationError as e:
        logging.error(f"Invalid agent configuration: {e}")
        raise e.as_kopf_error() from e

    memo.reconciler = build_reconciler(hub_client, spoke_client, trust_anchor)
    logging.info(
        f"Watching ManagedIdentities in hub namespace {agent_settings.cluster_name}, "
        f"ServiceAccounts in spoke namespace {agent_settings.spoke_namespace}"
    )

    # Start metrics server for Prometheus scraping
    try:
        metrics_server = MetricsServer(
            port=agent_settings.metrics_port, host=agent_settings.metrics_host
        )
        await metrics_server.start()

        global _global_metrics_server
        _global_metrics_server = metrics_server

    except Exception as e:
        logging.error(f"Failed to start metrics server: {e}")
        # Don't fail agent startup if metrics server fails
        logging.warning("Continuing without metrics server")


@kopf.on.cleanup()
async def cleanup_handler(**_) -> None:
    """Stop the metrics server on shutdown."""
    logging.info("Shutting down Managed Identity Agent...")

    global _global_metrics_server
    if _global_metrics_server:
        await _global_metrics_server.stop()
        _global_metrics_server = None


def main() -> None:
    """
    Main entry point for the agent.

    Configures logging and runs kopf restricted to the managed cluster's
    namespace on the hub.
    """
    configure_logging()

    if not agent_settings.cluster_name:
        logging.error("CLUSTER_NAME is required but not configured")
        sys.exit(1)

    try:
        kopf.run(
            standalone=True,
            namespaces=[agent_settings.cluster_name],
        )
    except KeyboardInterrupt:
        logging.info("Received shutdown signal")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Agent failed with error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
