from __future__ import annotations

from typing import Callable, Iterable, Optional

from common.logging_setup import get_logger
from common.utils import strip_color_codes

log = get_logger("scanner.executor")


class CommandExecutor:
    """Whoever issued a map command; receives progress and result messages."""
    name = "unknown"

    def display_message(self, text: str) -> None:
        raise NotImplementedError

    def is_authorized(self) -> bool:
        raise NotImplementedError


class ConsoleExecutor(CommandExecutor):
    """Server console: always authorized, messages go to the log."""
    name = "Server"

    def display_message(self, text: str) -> None:
        log.info(strip_color_codes(text))

    def is_authorized(self) -> bool:
        return True


class PlayerExecutor(CommandExecutor):
    """
    In-game player. Authorized by operator status or the admin tag.

    `send` delivers chat text; `is_online` reports whether the player is still
    connected. Messages to a disconnected player are logged instead.
    """

    def __init__(
        self,
        name: str,
        send: Callable[[str], None],
        tags: Iterable[str] = (),
        is_op: bool = False,
        admin_tag: str = "map_admin",
        is_online: Optional[Callable[[], bool]] = None,
    ):
        self.name = name
        self._send = send
        self.tags = set(tags)
        self.is_op = is_op
        self.admin_tag = admin_tag
        self._is_online = is_online or (lambda: True)

    def display_message(self, text: str) -> None:
        if not self._is_online():
            log.info(f"[to disconnected {self.name}] {strip_color_codes(text)}")
            return
        self._send(text)

    def is_authorized(self) -> bool:
        return self.is_op or self.admin_tag in self.tags
