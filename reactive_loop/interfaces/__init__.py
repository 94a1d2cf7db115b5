"""Protocol interfaces for the leverage loop engine."""
from .chain import ChainClient
from .notifier import Notifier
from .signer import Signer

__all__ = ["ChainClient", "Notifier", "Signer"]
