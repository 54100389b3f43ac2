"""Per-recording settings."""

from pydantic import BaseModel, ConfigDict, Field

from openrecorder.config import CONFIG


class RecorderProfile(BaseModel):
    """Recording configuration.

    Defaults come from the environment (see ``openrecorder.config``) and can
    be overridden per recording.
    """

    model_config = ConfigDict(extra='ignore', validate_assignment=True)

    command_timeout: float | None = Field(
        default_factory=lambda: CONFIG.COMMAND_TIMEOUT,
        description='Seconds to wait for a reply to a routed command; None waits forever',
    )
    size_update_interval: float = Field(
        default_factory=lambda: CONFIG.SIZE_UPDATE_INTERVAL,
        gt=0,
        description='Seconds between archive size reports',
    )
    partial_refetch_delay: float = Field(
        default_factory=lambda: CONFIG.PARTIAL_REFETCH_DELAY,
        ge=0,
        description='Delay before asking the page to re-request a 206 resource',
    )
    reload_on_attach: bool = Field(
        default_factory=lambda: CONFIG.RELOAD_ON_ATTACH,
        description='Reload the page once the top-level session is bootstrapped',
    )
    device_pixel_ratio: int = Field(default=1, ge=1, description='Forced window.devicePixelRatio on new documents')
    enable_interception: bool = Field(default=True, description='Intercept responses for rewriting')
