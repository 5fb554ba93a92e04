"""
Pytest fixtures for ConsoleDoc tests
"""

import threading

import pytest

from consoledoc.ansi import RESET
from consoledoc.models import Document, RenderSettings

RED = "\033[38;2;255;0;0m"
GREEN_ON_BLUE = "\033[38;2;0;255;0m\033[48;2;0;0;255m"
ORANGE_256 = "\033[38;5;208m"


class RecordingSleeper:
    """Sleeper that records delays instead of waiting."""

    def __init__(self, on_sleep=None):
        self.calls: list[float] = []
        self.on_sleep = on_sleep

    def __call__(self, seconds: float, cancel: threading.Event) -> bool:
        self.calls.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(len(self.calls))
        return cancel.is_set()

    @property
    def total_ms(self) -> float:
        return sum(self.calls) * 1000.0


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()


@pytest.fixture
def styled_frames() -> list[tuple[str, int, int, int]]:
    """
    Frames in the canonical styled form the codec reproduces exactly.
    :return: List of (content, delay_ms, width, height)
    """
    return [
        (f"{RED}##{RESET}  \n  {RED}##{RESET}", 100, 4, 2),
        (f" {RED}##{RESET} \n {RED}##{RESET} ", 80, 4, 2),
        (f"  {RED}##{RESET}\n{RED}##{RESET}  ", 120, 4, 2),
        (f"{GREEN_ON_BLUE}X{RESET}:;,\n\\{ORANGE_256}o{RESET}\r ", 60, 4, 2),
        ("plain\ntext", 0, 5, 2),
    ]


@pytest.fixture
def styled_document(styled_frames) -> Document:
    doc = Document(
        source_file="clip.gif",
        render_mode="ASCII",
        settings=RenderSettings(width=4, height=2, loop_count=2),
    )
    for content, delay, width, height in styled_frames:
        doc.add_frame(content, delay, width, height)
    return doc
