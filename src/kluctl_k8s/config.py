"""Configuration for cluster access."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from pathlib import Path

from kubernetes import client  # type: ignore[import-untyped]
from kubernetes import config as k8s_config
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from kluctl_k8s.utils.errors import ConfigurationError

SERVICE_ACCOUNT_TOKEN = Path("/var/run/secrets/kubernetes.io/serviceaccount/token")


class AuthMode(str, Enum):
    """How to authenticate against the API server."""

    AUTO = "auto"
    KUBECONFIG = "kubeconfig"
    IN_CLUSTER = "in_cluster"
    TOKEN = "token"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


def _is_running_in_cluster() -> bool:
    return SERVICE_ACCOUNT_TOKEN.exists()


class ClusterConfig(BaseSettings):
    """Cluster access settings.

    Values come from keyword arguments, ``KLUCTL_K8S_*`` environment
    variables or a ``.env`` file, in that order of precedence.
    """

    model_config = SettingsConfigDict(
        env_prefix="KLUCTL_K8S_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Connection
    auth_mode: AuthMode = Field(default=AuthMode.AUTO, description="Authentication mode")
    kubeconfig_path: str | None = Field(default=None, description="Path to kubeconfig file")
    kubeconfig_context: str | None = Field(default=None, description="Kubeconfig context to use")
    api_server: str | None = Field(default=None, description="API server URL for token auth")
    api_token: str | None = Field(default=None, description="Bearer token for token auth")
    ca_cert_path: str | None = Field(default=None, description="CA bundle for token auth")
    verify_ssl: bool = Field(default=True, description="Verify the API server certificate")
    request_timeout: float | None = Field(
        default=None, gt=0, description="Per-request timeout in seconds"
    )

    # Behaviour
    dry_run: bool = Field(default=False, description="Send every write as dry-run")
    field_manager: str = Field(default="kluctl", description="Server-side apply field manager")

    # Concurrency
    pool_size: int = Field(default=16, ge=1, description="Number of pooled API clients")
    list_workers: int = Field(default=8, ge=1, description="Parallel per-kind list calls")
    get_workers: int = Field(default=32, ge=1, description="Parallel per-object get calls")
    qps: float = Field(default=10.0, description="Client-side request rate, <= 0 disables")
    burst: int = Field(default=20, ge=1, description="Client-side request burst")

    # Timing
    delete_poll_interval: float = Field(
        default=0.5, gt=0, description="Seconds between deletion confirmation polls"
    )
    discovery_ttl: float = Field(
        default=300.0, ge=0, description="Seconds before a non-forced discovery refresh re-runs"
    )

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")

    def resolved_auth_mode(self) -> AuthMode:
        """Resolve AUTO to a concrete mode."""
        if self.auth_mode != AuthMode.AUTO:
            return self.auth_mode
        if self.api_server and self.api_token:
            return AuthMode.TOKEN
        if _is_running_in_cluster():
            return AuthMode.IN_CLUSTER
        return AuthMode.KUBECONFIG

    def validate_auth_config(self) -> list[str]:
        """Check the auth settings.

        Returns:
            Non-fatal warnings.

        Raises:
            ValueError: If the settings cannot work.
        """
        warnings: list[str] = []
        mode = self.resolved_auth_mode()

        if mode == AuthMode.TOKEN:
            if not self.api_server or not self.api_token:
                raise ValueError("Token auth requires both api_server and api_token")
            if not self.verify_ssl:
                warnings.append("TLS verification is disabled for token auth")
            elif not self.ca_cert_path:
                warnings.append("No CA bundle configured, using system trust store")
        elif mode == AuthMode.KUBECONFIG:
            if self.kubeconfig_path and not Path(self.kubeconfig_path).expanduser().exists():
                raise ValueError(f"Kubeconfig not found: {self.kubeconfig_path}")
        elif mode == AuthMode.IN_CLUSTER and not _is_running_in_cluster():
            raise ValueError("In-cluster auth requested but no service account token is mounted")

        if self.kubeconfig_context and mode != AuthMode.KUBECONFIG:
            warnings.append(f"kubeconfig_context is ignored in {mode.value} mode")

        return warnings

    def build_configuration(self) -> client.Configuration:
        """Create a kubernetes client Configuration for these settings.

        Raises:
            ConfigurationError: If the credentials cannot be loaded.
        """
        configuration = client.Configuration()
        mode = self.resolved_auth_mode()
        try:
            if mode == AuthMode.IN_CLUSTER:
                k8s_config.load_incluster_config(client_configuration=configuration)
            elif mode == AuthMode.KUBECONFIG:
                k8s_config.load_kube_config(
                    config_file=self.kubeconfig_path,
                    context=self.kubeconfig_context,
                    client_configuration=configuration,
                )
            else:
                if not self.api_server or not self.api_token:
                    raise ConfigurationError("Token auth requires api_server and api_token")
                configuration.host = self.api_server
                configuration.api_key = {"authorization": f"Bearer {self.api_token}"}
                configuration.verify_ssl = self.verify_ssl
                if self.ca_cert_path:
                    configuration.ssl_ca_cert = self.ca_cert_path
        except k8s_config.ConfigException as e:
            raise ConfigurationError(f"Cannot load Kubernetes configuration: {e}") from e
        return configuration


@lru_cache
def get_config() -> ClusterConfig:
    """Get the process-wide configuration instance."""
    return ClusterConfig()
