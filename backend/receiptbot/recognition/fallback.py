"""Ordered fallback evaluation shared by the recognition stages."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Step = tuple[str, Callable[[], "T | None"]]


def first_result(steps: Iterable[Step], label: str = "fallback") -> tuple[str, T] | None:
    """Run steps in order and return ``(name, result)`` of the first usable one.

    A step is unusable when it returns ``None`` or an empty value, or raises;
    errors are logged and the next step is tried.
    """
    for name, attempt in steps:
        try:
            result = attempt()
        except Exception as exc:  # noqa: BLE001
            logger.warning("[%s] step %s failed: %s", label, name, exc)
            continue
        if result:
            logger.info("[%s] step %s produced a result", label, name)
            return name, result
        logger.info("[%s] step %s produced nothing", label, name)
    return None
