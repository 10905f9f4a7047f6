from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Sequence

from lyre.theory.tuning import StringNote


@dataclass(frozen=True)
class StringEvent:
    """One string in a strum.

    - frequency: Hz of the open string
    - is_open: muted strings are skipped but still take their slot in time
    - string: 0-based index, low (0) .. high (5)
    """

    frequency: float
    is_open: bool
    string: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def string_events(strings: Sequence[StringNote], states: Sequence[int]) -> List[StringEvent]:
    """Pair each tuned string with its open/mute state."""
    if len(strings) != len(states):
        raise ValueError(f"got {len(states)} states for {len(strings)} strings")
    return [
        StringEvent(frequency=float(s.frequency), is_open=bool(int(state)), string=i)
        for i, (s, state) in enumerate(zip(strings, states))
    ]
