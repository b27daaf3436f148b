"""Pacing for automated interactions.

All delays are randomized and go through ``random_sleep``; nothing else
in the package calls ``asyncio.sleep`` with a fixed duration.
"""

import asyncio
import logging
import random

logger = logging.getLogger(__name__)

# Floor values: code enforces these regardless of caller args.
ACTION_DELAY_FLOOR = 0.5
TYPING_DELAY_MS = 40


async def random_sleep(min_s: float, max_s: float) -> float:
    """Sleep for a random duration between min_s and max_s seconds.

    Floor enforcement: min_s is always respected as the absolute minimum.
    If max_s < min_s, max_s is raised to min_s.

    Returns the actual sleep duration (useful for testing).
    """
    floor = max(min_s, 0.0)
    ceiling = max(max_s, floor)
    duration = random.uniform(floor, ceiling)
    logger.debug("Sleeping %.2fs", duration)
    await asyncio.sleep(duration)
    return duration


async def action_pause() -> float:
    """Short human-like pause between two control interactions on the same page."""
    return await random_sleep(ACTION_DELAY_FLOOR, ACTION_DELAY_FLOOR * 3)
