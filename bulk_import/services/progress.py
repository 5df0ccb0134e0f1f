from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Commit progress display with tqdm (TTY only).

The commit executor reports a percentage after every row. This tracker turns
those callbacks into a single tqdm bar when stdout is a terminal and stays
silent otherwise (CI / redirected output), while always remembering the last
reported percentage.
"""

__all__ = [
    "CommitProgress",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class CommitProgress:
    """Progress tracker for one commit run, usable as ``progress_callback``."""

    def __init__(self, total_rows: int, *, description: str = "Importing rows") -> None:
        self.total_rows = total_rows
        self.description = description
        self.percent = 0
        self.history: list[int] = []

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=100,
                desc=description,
                unit="%",
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def __call__(self, percent: int) -> None:
        self.update(percent)

    def update(self, percent: int) -> None:
        if percent < self.percent:
            # 単調増加のみ表示
            return
        delta = percent - self.percent
        self.percent = percent
        self.history.append(percent)
        if self.enabled and self.pbar is not None and delta:
            self.pbar.update(delta)

    def set_postfix(self, **kwargs: Any) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> CommitProgress:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
