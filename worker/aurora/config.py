"""
Configuration loader for the Aurora Alert worker.

Uses Pydantic Settings for environment variable parsing, with SSM parameter
resolution in non-local environments.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache

import boto3
from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from worker.aurora.geocoding import DEFAULT_GEOCODER_URL, DEFAULT_USER_AGENT
from worker.aurora.reader import (
    DEFAULT_FEED_URL,
    DEFAULT_SAMPLES_FIELD,
    DEFAULT_TIMEOUT_SECONDS,
)
from worker.aurora.scheduler import (
    DEFAULT_EVALUATION_INTERVAL_SECONDS,
    DEFAULT_PRUNE_INTERVAL_SECONDS,
)


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Aurora Alert worker configuration loaded from environment variables.

    In production (APP_ENV != 'local'), environment variables with an
    ``_SSM_PARAM`` suffix are resolved via AWS Systems Manager Parameter
    Store before constructing the settings object.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: SecretStr
    # Empty: notifications are logged instead of published
    notification_queue_url: str = ""
    aws_region: str = "us-east-1"

    # Aurora feed
    feed_url: str = DEFAULT_FEED_URL
    feed_samples_field: str = DEFAULT_SAMPLES_FIELD
    feed_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    # Scheduling
    evaluation_interval_seconds: float = DEFAULT_EVALUATION_INTERVAL_SECONDS
    prune_interval_seconds: float = DEFAULT_PRUNE_INTERVAL_SECONDS

    # Reverse geocoding for notification labels
    enable_geocoding: bool = True
    geocoder_url: str = DEFAULT_GEOCODER_URL
    geocoder_user_agent: str = DEFAULT_USER_AGENT
    geocoder_timeout_seconds: float = 10.0

    log_level: str = "INFO"


SSM_PARAM_SUFFIX = "_SSM_PARAM"
# GetParameters accepts at most 10 names per call
_SSM_BATCH_SIZE = 10


def _resolve_ssm_params() -> None:
    """Inject secrets referenced by ``<NAME>_SSM_PARAM`` variables.

    ``DATABASE_URL_SSM_PARAM=/aurora/prod/database-url`` results in
    ``DATABASE_URL`` being set from that SecureString parameter. Names that
    SSM reports as invalid are logged and left unset, so ``Settings`` fails
    with a clear validation error for required fields.
    """
    targets: dict[str, str] = {
        key[: -len(SSM_PARAM_SUFFIX)]: param_name
        for key, param_name in os.environ.items()
        if key.endswith(SSM_PARAM_SUFFIX)
    }
    if not targets:
        return

    ssm = boto3.client("ssm", region_name=os.environ.get("AWS_REGION", "us-east-1"))

    resolved: dict[str, str] = {}
    names = sorted(set(targets.values()))
    for start in range(0, len(names), _SSM_BATCH_SIZE):
        response = ssm.get_parameters(
            Names=names[start : start + _SSM_BATCH_SIZE], WithDecryption=True
        )
        resolved.update({p["Name"]: p["Value"] for p in response["Parameters"]})
        for missing in response.get("InvalidParameters", []):
            logger.error("SSM parameter not found: %s", missing)

    for env_key, param_name in targets.items():
        if param_name in resolved:
            os.environ[env_key] = resolved[param_name]


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Load and cache application settings.

    1. Check ``APP_ENV`` environment variable.
    2. If not ``local``, resolve SSM parameters into the environment.
    3. Construct and return the ``Settings`` object.
    """
    app_env = os.environ.get("APP_ENV", "local")
    if app_env != "local":
        _resolve_ssm_params()

    return Settings()  # type: ignore[call-arg]
