"""Temporal client factory.

Creates connections to Temporal using the pipeline settings (loaded from the
environment and an optional .env file).
"""

from typing import Optional

from temporalio.client import Client

from core.config import Settings, get_settings


async def get_temporal_client(settings: Optional[Settings] = None) -> Client:
    """Create and return a Temporal client.

    Uses TEMPORAL_ENDPOINT, TEMPORAL_NAMESPACE and TEMPORAL_API_KEY. When an
    API key is set the connection uses TLS with system certificates
    (Temporal Cloud); without one it connects in plain text (local dev server).

    Raises:
        ValueError: If TEMPORAL_ENDPOINT is not set
    """
    settings = settings or get_settings()

    if not settings.temporal_endpoint:
        raise ValueError(
            "TEMPORAL_ENDPOINT environment variable not set. "
            "Set to your Temporal endpoint (e.g., 'localhost:7233')"
        )

    if settings.temporal_api_key:
        return await Client.connect(
            target_host=settings.temporal_endpoint,
            namespace=settings.temporal_namespace,
            tls=True,
            api_key=settings.temporal_api_key,
        )

    return await Client.connect(
        target_host=settings.temporal_endpoint,
        namespace=settings.temporal_namespace,
    )
