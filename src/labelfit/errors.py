from __future__ import annotations

from dataclasses import dataclass


@dataclass
class LabelFitError(Exception):
    code: str
    message: str
    hint: str

    def __str__(self) -> str:
        return self.message
