"""Application configuration for the node taint manager."""

from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from safir.logging import LogLevel, Profile, configure_logging
from safir.pydantic import HumanTimedelta

from .constants import (
    DEFAULT_METRICS_PORT,
    DEFAULT_PATCH_ATTEMPTS,
    DEFAULT_PATCH_RETRY_DELAY,
    DEFAULT_RECONCILE_INTERVAL,
    DEFAULT_RESYNC_INTERVAL,
    DEFAULT_SYNC_TIMEOUT,
    DEFAULT_TAINT_KEY,
    ENV_PREFIX,
    ROOT_LOGGER,
)

__all__ = ["Config", "EnvFirstSettings"]


class EnvFirstSettings(BaseSettings):
    """Base class for Pydantic settings with environment overrides.

    Classes that inherit from this base class will prioritize environment
    variables over arguments to the class constructor.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX, extra="forbid", validate_by_name=True
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Override the sources of settings.

        Deactivate :file:`.env` and secret file support. Allow environment
        variables to override init parameters, since init parameters come
        from the YAML configuration file and environment variables should
        take precedence.
        """
        return (env_settings, init_settings)


class Config(EnvFirstSettings):
    """Configuration for the node taint manager."""

    taint_key: Annotated[
        str,
        Field(
            title="Gating taint key",
            description=(
                "Key of the taint removed from a node once all daemonset pods"
                " tolerating it are ready"
            ),
            min_length=1,
            validation_alias=AliasChoices(
                ENV_PREFIX + "TAINT_KEY", "taintKey"
            ),
        ),
    ] = DEFAULT_TAINT_KEY

    reconcile_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Reconciliation interval",
            description="How frequently to evaluate every cached node",
            validation_alias=AliasChoices(
                ENV_PREFIX + "RECONCILE_INTERVAL", "reconcileInterval"
            ),
        ),
    ] = DEFAULT_RECONCILE_INTERVAL

    resync_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Cache resync interval",
            description="How frequently to list all nodes and pods again",
            validation_alias=AliasChoices(
                ENV_PREFIX + "RESYNC_INTERVAL", "resyncInterval"
            ),
        ),
    ] = DEFAULT_RESYNC_INTERVAL

    sync_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Initial cache sync timeout",
            validation_alias=AliasChoices(
                ENV_PREFIX + "SYNC_TIMEOUT", "syncTimeout"
            ),
        ),
    ] = DEFAULT_SYNC_TIMEOUT

    patch_attempts: Annotated[
        int,
        Field(
            title="Patch attempts",
            description=(
                "Maximum number of attempts to remove taints from a node"
                " during one reconciliation"
            ),
            ge=1,
            validation_alias=AliasChoices(
                ENV_PREFIX + "PATCH_ATTEMPTS", "patchAttempts"
            ),
        ),
    ] = DEFAULT_PATCH_ATTEMPTS

    patch_retry_delay: Annotated[
        HumanTimedelta,
        Field(
            title="Delay between patch attempts",
            description="Multiplied by the number of the failed attempt",
            validation_alias=AliasChoices(
                ENV_PREFIX + "PATCH_RETRY_DELAY", "patchRetryDelay"
            ),
        ),
    ] = DEFAULT_PATCH_RETRY_DELAY

    reconcile_on_change: Annotated[
        bool,
        Field(
            title="Reconcile nodes as soon as they change",
            description=(
                "If True, a node is evaluated whenever it or one of its pods"
                " changes, and the periodic pass only queues every node"
            ),
            validation_alias=AliasChoices(
                ENV_PREFIX + "RECONCILE_ON_CHANGE", "reconcileOnChange"
            ),
        ),
    ] = True

    metrics_enabled: Annotated[
        bool,
        Field(
            title="Serve Prometheus metrics",
            validation_alias=AliasChoices(
                ENV_PREFIX + "METRICS_ENABLED", "metricsEnabled"
            ),
        ),
    ] = True

    metrics_port: Annotated[
        int,
        Field(
            title="Port for the metrics endpoint",
            ge=1,
            le=65535,
            validation_alias=AliasChoices(
                ENV_PREFIX + "METRICS_PORT", "metricsPort"
            ),
        ),
    ] = DEFAULT_METRICS_PORT

    debug: Annotated[
        bool,
        Field(
            title="Show debug output and log style",
            description=(
                "If True, then log level will be set to debug and will"
                " non-structured, human-readable output."
            ),
        ),
    ] = False

    log_profile: Annotated[
        Profile,
        Field(
            title="Logging profile",
            validation_alias=AliasChoices(
                ENV_PREFIX + "LOG_PROFILE", "logProfile"
            ),
        ),
    ] = Profile.production

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            validation_alias=AliasChoices(
                ENV_PREFIX + "LOG_LEVEL", "logLevel"
            ),
        ),
    ] = LogLevel.INFO

    add_timestamp: Annotated[
        bool,
        Field(
            title="Add timestamp to log lines",
            validation_alias=AliasChoices(
                ENV_PREFIX + "ADD_TIMESTAMP", "addTimestamp"
            ),
        ),
    ] = False

    slack_webhook: Annotated[
        SecretStr | None,
        Field(
            title="Slack webhook URL used for sending alerts",
            description=(
                "An https URL, which should be considered secret."
                " If not set or set to `None`, this feature will be disabled."
            ),
            validation_alias=AliasChoices(
                ENV_PREFIX + "SLACK_WEBHOOK", "slackWebhook"
            ),
        ),
    ] = None

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Construct the configuration from a YAML file.

        Parameters
        ----------
        path
            Path to the configuration file in YAML.

        Returns
        -------
        Config
            The corresponding configuration.
        """
        with path.open("r") as f:
            config = cls.model_validate(yaml.safe_load(f) or {})
        config.configure_logging()
        return config

    def configure_logging(self) -> None:
        """Configure logging based on the configuration."""
        if self.debug:
            log_level = LogLevel.DEBUG
            log_profile = Profile.development
        else:
            log_level = self.log_level
            log_profile = self.log_profile

        configure_logging(
            profile=log_profile,
            log_level=log_level,
            add_timestamp=self.add_timestamp,
            name=ROOT_LOGGER,
        )
