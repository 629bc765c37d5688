from typing import Callable, Dict, List, Mapping, Optional

from sigflow.exceptions import UnknownOperation


TransformFn = Callable[[List[str], int], None]


def reverse(chars: List[str], arg: int = 0) -> None:
    chars.reverse()


def swap(chars: List[str], arg: int = 0) -> None:
    if not chars:
        return
    index = arg % len(chars)
    chars[0], chars[index] = chars[index], chars[0]


def splice(chars: List[str], arg: int = 0) -> None:
    del chars[:arg]


class TransformCatalog:
    """Native implementations of the primitive signature operations, by name."""

    def __init__(self, operations: Mapping[str, TransformFn]):
        self._operations: Dict[str, TransformFn] = dict(operations)

    def __contains__(self, name: str) -> bool:
        return name in self._operations

    def names(self) -> List[str]:
        return list(self._operations)

    def get(self, name: str) -> TransformFn:
        try:
            return self._operations[name]
        except KeyError:
            raise UnknownOperation(f"Operation {name!r} is not in the transform catalog") from None

    def apply(self, name: str, chars: List[str], arg: Optional[int] = None) -> None:
        self.get(name)(chars, 0 if arg is None else arg)

    def extend(self, **operations: TransformFn) -> "TransformCatalog":
        """Return a new catalog with extra operations added."""
        merged = dict(self._operations)
        merged.update(operations)
        return TransformCatalog(merged)


DEFAULT_CATALOG = TransformCatalog({"reverse": reverse, "swap": swap, "splice": splice})
