"""Notifier protocol for loop alerts and logs."""
from typing import Protocol


class Notifier(Protocol):
    """A channel the engine reports loop progress through.

    ``send_alert`` is for conditions that need the user (timeout, danger zone,
    lost monitoring); ``send_log`` is for routine progress such as a finished
    loop. Both return whether the message was delivered.
    """

    async def send_alert(self, message: str, subject: str = "") -> bool: ...

    async def send_log(self, message: str, silent: bool = True) -> bool: ...
