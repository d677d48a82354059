# src/sitewatch/connectors/notifier.py

from __future__ import annotations

import logging

from ..core.ports import Notifier

logger = logging.getLogger(__name__)

MATRIX_ROOM_PREFIX = "!"


class RoutingNotifier:
    """
    The notifier handed to task contexts.

    Matrix room ids ("!abc:server") go to the Matrix connector once it is
    attached; everything else (and everything while Matrix is off) goes to
    the console.
    """

    def __init__(self, console: Notifier, matrix: Notifier | None = None) -> None:
        self._console = console
        self._matrix = matrix

    @property
    def matrix(self) -> Notifier | None:
        return self._matrix

    def attach_matrix(self, matrix: Notifier | None) -> None:
        self._matrix = matrix

    async def deliver(self, destination: str, content: str) -> bool:
        if self._matrix is not None and destination.startswith(MATRIX_ROOM_PREFIX):
            return await self._matrix.deliver(destination, content)
        if destination.startswith(MATRIX_ROOM_PREFIX):
            logger.debug("Matrix is not connected; printing message for %s", destination)
        return await self._console.deliver(destination, content)
