"""
Per-asset outcomes returned by the image and narration clients.

Media generation failures are values, not exceptions: the clients convert
whatever went wrong into ``AssetFailed`` and the assembler decides what to
substitute.
"""
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class AssetOk(Generic[T]):
    value: T


@dataclass(frozen=True)
class AssetFailed:
    reason: str
    rate_limited: bool = False


AssetResult = Union[AssetOk, AssetFailed]
