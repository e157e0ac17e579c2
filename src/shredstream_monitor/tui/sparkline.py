"""Sparkline widget for per-slot series such as transactions per slot.

Values are drawn as vertical block bars, one column per value, scaled to the
largest value shown unless a fixed maximum is given. Multi-row height adds
vertical resolution: each row contributes 8 levels.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from rich.text import Text
from textual.reactive import reactive
from textual.widgets import Static

if TYPE_CHECKING:
    from textual.app import RenderResult

BLOCKS = " ▁▂▃▄▅▆▇█"
LEVELS_PER_ROW = 8


def _scale(value: float, top: float, total_levels: int) -> int:
    """Map a value in [0, top] to an integer level in [0, total_levels]."""
    if top <= 0:
        return 0
    normalized = max(0.0, min(1.0, value / top))
    level = int(round(normalized * total_levels))
    # Any non-zero value gets at least the lowest bar so activity stays visible
    if value > 0 and level == 0:
        level = 1
    return level


def render_sparkline(
    values: Sequence[float],
    width: int = 0,
    height: int = 1,
    max_value: float | None = None,
    style: str = "",
) -> Text:
    """Render values as block characters, newest on the right.

    Args:
        values: Series to plot, oldest first.
        width: Columns available; older values beyond it are dropped. 0 = no limit.
        height: Rows (1-4).
        max_value: Fixed top of the scale. None scales to the largest value shown.
        style: Rich style applied to the bars.

    Returns:
        Text with ``height`` lines of equal length.
    """
    height = max(1, min(4, height))
    shown = list(values[-width:]) if width > 0 else list(values)
    if not shown:
        return Text("\n".join(" " * max(1, width) for _ in range(height)))

    top = max(shown) if max_value is None else max_value
    total_levels = height * LEVELS_PER_ROW

    # rows[0] is the bottom row
    rows = ["" for _ in range(height)]
    for value in shown:
        level = _scale(value, top, total_levels)
        for row in range(height):
            remaining = level - row * LEVELS_PER_ROW
            rows[row] += BLOCKS[max(0, min(LEVELS_PER_ROW, remaining))]

    return Text("\n".join(reversed(rows)), style=style)


class Sparkline(Static):
    """A sparkline over a replaceable series.

    Example:
        ```python
        sparkline = Sparkline(height=2, style="magenta")
        sparkline.data = [10, 20, 30]
        ```
    """

    DEFAULT_CSS = """
    Sparkline {
        width: 1fr;
        height: auto;
    }
    """

    data: reactive[list[float]] = reactive(list, always_update=True)

    def __init__(
        self,
        height: int = 1,
        max_value: float | None = None,
        style: str = "",
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self._height = max(1, min(4, height))
        self._max_value = max_value
        self._style = style

    def render(self) -> RenderResult:
        return render_sparkline(
            self.data,
            width=self.size.width,
            height=self._height,
            max_value=self._max_value,
            style=self._style,
        )

    def watch_data(self, new_data: list[float]) -> None:
        self.refresh()
