"""Shared fixtures for the WSL monitor tests."""

import sys
from typing import Dict, List, Optional, Sequence, Tuple

import pytest
from loguru import logger

from wsl_monitor import CommandResult


class StubExecutor:
    """
    Stands in for `SubprocessExecutor`.

    Responses are looked up by the tail of the joined argv, e.g. ``"apt update"``
    or ``"--list --quiet"``. Unknown commands succeed with empty output.
    """

    def __init__(
        self,
        responses: Optional[Dict[str, Tuple[str, int]]] = None,
        raises: Optional[Dict[str, BaseException]] = None,
    ):
        self.responses = responses or {}
        self.raises = raises or {}
        self.calls: List[List[str]] = []

    def execute(self, argv: Sequence[str]) -> CommandResult:
        self.calls.append(list(argv))
        joined = " ".join(argv)
        for suffix, exc in self.raises.items():
            if joined.endswith(suffix):
                raise exc
        for suffix, (output, return_code) in self.responses.items():
            if joined.endswith(suffix):
                return CommandResult(argv=list(argv), output=output, return_code=return_code)
        return CommandResult(argv=list(argv), output="", return_code=0)


@pytest.fixture()
def make_executor():
    """Return the stub executor class."""
    return StubExecutor


@pytest.fixture(autouse=True)
def _reset_logger():
    """Route loguru to the current stderr and drop handlers added by main()."""
    logger.remove()
    logger.add(lambda message: sys.stderr.write(message), level="TRACE")
    yield
    logger.remove()
