from __future__ import annotations

from typing import Any, Dict, List, Optional

ChartSpec = Dict[str, Any]


class PlotHistory:
    """Charts produced in this session, with a cursor for back/forward.

    New charts always go on the end and become current; moving back and then
    appending does not discard anything.
    """

    def __init__(self) -> None:
        self._specs: List[ChartSpec] = []
        self._cursor = -1

    def __len__(self) -> int:
        return len(self._specs)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def current(self) -> Optional[ChartSpec]:
        if not self._specs:
            return None
        return self._specs[self._cursor]

    @property
    def can_go_back(self) -> bool:
        return self._cursor > 0

    @property
    def can_go_forward(self) -> bool:
        return 0 <= self._cursor < len(self._specs) - 1

    def append(self, spec: ChartSpec) -> None:
        self._specs.append(spec)
        self._cursor = len(self._specs) - 1

    def back(self) -> Optional[ChartSpec]:
        if not self.can_go_back:
            return None
        self._cursor -= 1
        return self._specs[self._cursor]

    def forward(self) -> Optional[ChartSpec]:
        if not self.can_go_forward:
            return None
        self._cursor += 1
        return self._specs[self._cursor]
