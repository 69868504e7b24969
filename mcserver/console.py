from __future__ import annotations

import sys


class Console:
    def __init__(self, *, quiet: bool = False) -> None:
        self.quiet = quiet

    def info(self, value: str) -> None:
        if not self.quiet:
            print(value)

    def always(self, value: str) -> None:
        print(value)

    def warn(self, value: str) -> None:
        print(f"Warning: {value}", file=sys.stderr)
