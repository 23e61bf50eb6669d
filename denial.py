"""
Denial Reasons
==============
Reusable reasons an owner picks from when denying an order.

Presets come from configuration. Free-text reasons typed at denial time
are remembered as non-preset entries so they can be reused. Matching is
case-insensitive and the catalog never holds duplicates.
"""

import logging
from typing import List, Iterable

from errors import ValidationError
from models import DenialReason


logger = logging.getLogger(__name__)


MAX_REASON_LENGTH = 200


def normalize_reason(reason: str) -> str:
    """
    Strip and validate a denial reason.

    Raises:
        ValidationError: If the reason is empty or too long
    """
    text = " ".join((reason or "").split())
    if not text:
        raise ValidationError("A reason is required to deny an order")

    if len(text) > MAX_REASON_LENGTH:
        raise ValidationError(f"Denial reason must be {MAX_REASON_LENGTH} characters or less")

    return text


class DenialReasonCatalog:
    """Preset plus remembered denial reasons."""

    def __init__(self, store, presets: Iterable[str] = ()):
        self.store = store
        self.presets = [normalize_reason(p) for p in presets]

    async def list_reasons(self) -> List[DenialReason]:
        """Presets first, then remembered reasons oldest first, deduplicated."""
        seen = set()
        reasons = []

        for preset in self.presets:
            key = preset.casefold()
            if key not in seen:
                seen.add(key)
                reasons.append(DenialReason(reason=preset, is_preset=True))

        stored = await self.store.list_denial_reasons()
        for entry in sorted(stored, key=lambda r: r.created_at):
            key = entry.reason.casefold()
            if key not in seen:
                seen.add(key)
                reasons.append(entry)

        return reasons

    async def remember(self, reason: str) -> str:
        """
        Record a free-text reason unless it is already known.

        Returns:
            The normalized reason
        """
        text = normalize_reason(reason)
        known = {r.reason.casefold() for r in await self.list_reasons()}

        if text.casefold() not in known:
            await self.store.add_denial_reason(DenialReason(reason=text, is_preset=False))
            logger.info(f"Remembered new denial reason: {text}")

        return text
