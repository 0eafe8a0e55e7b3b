"""
Decision sources — who answers the yes/no gates.

The driver and executor never read the terminal directly. They ask a
DecisionSource, so the same pipeline runs interactively (click prompt),
unattended (``--yes`` / ``--no-input``) or under test with scripted
answers.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import click

logger = logging.getLogger(__name__)


class DecisionSource(ABC):
    """Answers confirmation questions."""

    @abstractmethod
    def confirm(self, question: str, default: bool = False) -> bool:
        """Return True for yes, False for no."""


class ClickDecisions(DecisionSource):
    """Ask the operator on the terminal."""

    def confirm(self, question: str, default: bool = False) -> bool:
        return click.confirm(question, default=default)


class PresetDecisions(DecisionSource):
    """Give the same answer to every question (unattended runs)."""

    def __init__(self, answer: bool):
        self.answer = answer
        self.asked: list[str] = []

    def confirm(self, question: str, default: bool = False) -> bool:
        self.asked.append(question)
        logger.info("%s → %s (preset)", question, "yes" if self.answer else "no")
        return self.answer


class ScriptedDecisions(DecisionSource):
    """Answer by question substring, falling back to ``default``.

        ScriptedDecisions({"Overwrite": False, "Continue": True})
    """

    def __init__(self, answers: dict[str, bool] | None = None, default: bool = False):
        self.answers = dict(answers or {})
        self.default = default
        self.asked: list[str] = []

    def confirm(self, question: str, default: bool = False) -> bool:
        self.asked.append(question)
        for needle, answer in self.answers.items():
            if needle in question:
                return answer
        return self.default
