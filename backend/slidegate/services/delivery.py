from typing import Protocol

from ..context import logger


class DeliveryChannel(Protocol):
    async def deliver(self, recipient: str, purpose: str, code: str, ttl_seconds: int) -> None: ...


def mask_recipient(recipient: str) -> str:
    name, sep, domain = recipient.partition("@")
    if not sep:
        return recipient[:2] + "***"
    return f"{name[:2]}***@{domain}"


class LoggingDeliveryChannel:
    """Stand-in channel for deployments without a mail relay; the code itself is never logged."""

    async def deliver(self, recipient: str, purpose: str, code: str, ttl_seconds: int) -> None:
        logger.info(
            f"Email captcha issued for {mask_recipient(recipient)}, purpose: {purpose}, "
            f"valid for {ttl_seconds // 60} min"
        )


__all__ = ["DeliveryChannel", "LoggingDeliveryChannel", "mask_recipient"]
