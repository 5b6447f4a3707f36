"""Destinations — the closed set of sinks the dispatcher fans out to.

Selection is static: settings.enabled_destinations names the tags, and a
tag whose credentials are missing is left out. Nothing is probed at runtime.
"""

from loguru import logger

from ..config import Settings, settings as default_settings
from .base import BaseDestination
from .ga4 import GA4MeasurementProtocol
from .klaviyo import KlaviyoDestination
from .meta import MetaConversionsDestination, MetaPixelDestination, PixelOutbox
from .tag_manager import TagManagerRelay

DESTINATION_TAGS = ("tag_manager", "klaviyo", "meta_pixel", "meta_capi", "ga4")


def _construct(tag: str, cfg: Settings, outbox: PixelOutbox) -> BaseDestination:
    timeout = cfg.dispatch_timeout_seconds
    if tag == "tag_manager":
        return TagManagerRelay(cfg.tag_manager_url, affiliation=cfg.affiliation, timeout=timeout)
    if tag == "klaviyo":
        return KlaviyoDestination(cfg.klaviyo_private_key, cfg.klaviyo_revision, timeout=timeout)
    if tag == "meta_pixel":
        return MetaPixelDestination(cfg.meta_pixel_id, outbox, timeout=timeout)
    if tag == "meta_capi":
        return MetaConversionsDestination(
            cfg.meta_pixel_id,
            cfg.meta_access_token,
            graph_version=cfg.meta_graph_version,
            test_event_code=cfg.meta_test_event_code,
            timeout=timeout,
        )
    if tag == "ga4":
        return GA4MeasurementProtocol(cfg.ga4_measurement_id, cfg.ga4_api_secret, timeout=timeout)
    raise ValueError(f"Unknown destination: {tag}")


def build_destinations(cfg: Settings | None = None, outbox: PixelOutbox | None = None) -> list[BaseDestination]:
    """Enabled destinations, in the order configured."""
    cfg = cfg or default_settings
    outbox = outbox if outbox is not None else PixelOutbox()
    result = []
    for tag in cfg.enabled_destinations:
        dest = _construct(tag, cfg, outbox)
        if dest.enabled:
            result.append(dest)
    return result


def log_destination_status(cfg: Settings | None = None) -> dict[str, bool]:
    """Log which destinations are enabled/disabled at startup.

    Returns dict mapping destination tag to enabled (True/False).
    """
    cfg = cfg or default_settings
    outbox = PixelOutbox()
    status = {}
    for tag in DESTINATION_TAGS:
        configured = tag in cfg.enabled_destinations
        status[tag] = configured and _construct(tag, cfg, outbox).enabled

    enabled = {k for k, v in status.items() if v}
    disabled = {k for k, v in status.items() if not v}
    if enabled:
        logger.info("Destinations enabled: {}", ", ".join(sorted(enabled)))
    if disabled:
        logger.warning("Destinations disabled (not configured or missing credentials): {}", ", ".join(sorted(disabled)))
    return status


__all__ = [
    "BaseDestination",
    "DESTINATION_TAGS",
    "GA4MeasurementProtocol",
    "KlaviyoDestination",
    "MetaConversionsDestination",
    "MetaPixelDestination",
    "PixelOutbox",
    "TagManagerRelay",
    "build_destinations",
    "log_destination_status",
]
