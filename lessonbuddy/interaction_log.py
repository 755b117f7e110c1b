"""Append-only log of interactions captured during a recording."""

from typing import Iterator, List, Optional, Tuple

from .errors import ValidationError
from .models import Interaction


class InteractionLog:
    """Ordered sequence of interactions; insertion order is temporal order."""

    def __init__(self):
        self._items: List[Interaction] = []

    def append(self, interaction: Interaction) -> None:
        last = self.last
        if last is not None and interaction.timestamp < last.timestamp:
            raise ValidationError(
                f"Cannot append interaction at {interaction.timestamp}ms "
                f"after one at {last.timestamp}ms"
            )
        self._items.append(interaction)

    @property
    def last(self) -> Optional[Interaction]:
        return self._items[-1] if self._items else None

    def snapshot(self) -> Tuple[Interaction, ...]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Interaction]:
        return iter(tuple(self._items))
