from dataclasses import dataclass
from typing import Iterator, Optional, Tuple


@dataclass(frozen=True)
class TransformOp:
    """One step of a transform plan: a catalog operation and its integer argument."""

    name: str
    arg: Optional[int] = None

    def __str__(self) -> str:
        return self.name if self.arg is None else f"{self.name}({self.arg})"


@dataclass(frozen=True)
class TransformPlan:
    """Ordered, immutable sequence of transform steps recovered from one player script."""

    ops: Tuple[TransformOp, ...]

    def __post_init__(self):
        object.__setattr__(self, "ops", tuple(self.ops))
        if not self.ops:
            raise ValueError("A transform plan needs at least one operation")

    def __iter__(self) -> Iterator[TransformOp]:
        return iter(self.ops)

    def __len__(self) -> int:
        return len(self.ops)

    def __str__(self) -> str:
        return " -> ".join(str(op) for op in self.ops)
