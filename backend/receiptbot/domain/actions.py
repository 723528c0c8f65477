"""Typed callback actions carried by inline keyboard buttons.

Each action travels as ``<action>:<entityId>[:<parameter>]`` and is parsed
exactly once, when the callback query arrives.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Union

from ..exceptions import InvalidAction

SUGGESTED_OPTION = -1
MAX_CALLBACK_BYTES = 64


@dataclass(slots=True, frozen=True)
class ConfirmItem:
    """Confirm an item with its suggestion (``option == -1``) or an alternative."""

    tag: ClassVar[str] = "ci"
    item_id: int
    option: int = SUGGESTED_OPTION

    def encode(self) -> str:
        return f"{self.tag}:{self.item_id}:{self.option}"


@dataclass(slots=True, frozen=True)
class OtherCategory:
    tag: ClassVar[str] = "io"
    item_id: int

    def encode(self) -> str:
        return f"{self.tag}:{self.item_id}"


@dataclass(slots=True, frozen=True)
class SkipItem:
    tag: ClassVar[str] = "is"
    item_id: int

    def encode(self) -> str:
        return f"{self.tag}:{self.item_id}"


@dataclass(slots=True, frozen=True)
class AcceptMatch:
    """Use the close category match offered for typed input."""

    tag: ClassVar[str] = "im"
    item_id: int

    def encode(self) -> str:
        return f"{self.tag}:{self.item_id}"


@dataclass(slots=True, frozen=True)
class CreateCategory:
    """Create the typed category instead of the offered match."""

    tag: ClassVar[str] = "in"
    item_id: int

    def encode(self) -> str:
        return f"{self.tag}:{self.item_id}"


@dataclass(slots=True, frozen=True)
class AcceptSummary:
    tag: ClassVar[str] = "sa"
    job_id: int

    def encode(self) -> str:
        return f"{self.tag}:{self.job_id}"


@dataclass(slots=True, frozen=True)
class CorrectSummary:
    tag: ClassVar[str] = "sc"
    job_id: int

    def encode(self) -> str:
        return f"{self.tag}:{self.job_id}"


@dataclass(slots=True, frozen=True)
class ItemwiseSummary:
    tag: ClassVar[str] = "si"
    job_id: int

    def encode(self) -> str:
        return f"{self.tag}:{self.job_id}"


Action = Union[
    ConfirmItem,
    OtherCategory,
    SkipItem,
    AcceptMatch,
    CreateCategory,
    AcceptSummary,
    CorrectSummary,
    ItemwiseSummary,
]

_SINGLE_ID_ACTIONS = {
    cls.tag: cls
    for cls in (OtherCategory, SkipItem, AcceptMatch, CreateCategory, AcceptSummary, CorrectSummary, ItemwiseSummary)
}


def _parse_int(raw: str, data: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise InvalidAction(f"Non-numeric field in callback data {data!r}.") from exc


def parse_action(data: str | None) -> Action:
    """Turn callback data into a typed action, raising ``InvalidAction``."""
    if not data:
        raise InvalidAction("Empty callback data.")
    if len(data.encode("utf-8")) > MAX_CALLBACK_BYTES:
        raise InvalidAction("Callback data is too long.")

    tag, *params = data.split(":")

    if tag == ConfirmItem.tag:
        if len(params) != 2:
            raise InvalidAction(f"Malformed callback data {data!r}.")
        option = _parse_int(params[1], data)
        if option < SUGGESTED_OPTION:
            raise InvalidAction(f"Negative option index in {data!r}.")
        return ConfirmItem(item_id=_parse_int(params[0], data), option=option)

    action_cls = _SINGLE_ID_ACTIONS.get(tag)
    if action_cls is None:
        raise InvalidAction(f"Unknown action {tag!r}.")
    if len(params) != 1:
        raise InvalidAction(f"Malformed callback data {data!r}.")
    return action_cls(_parse_int(params[0], data))
