"""Unit tests for logging configuration."""
from __future__ import annotations

import logging

from reactive_loop.logging_setup import configure_logging


class TestConfigureLogging:
    def test_sets_info_level(self) -> None:
        configure_logging("INFO")
        assert logging.getLogger().level == logging.INFO

    def test_sets_debug_level(self) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_quiets_third_party_loggers(self) -> None:
        configure_logging("DEBUG")
        for name in ("aiohttp", "web3", "urllib3"):
            assert logging.getLogger(name).level == logging.WARNING

    def test_invalid_level_defaults_to_info(self) -> None:
        configure_logging("NONEXISTENT")
        assert logging.getLogger().level == logging.INFO

    def test_repeated_calls_install_one_handler(self) -> None:
        configure_logging("INFO")
        configure_logging("INFO")
        ours = [h for h in logging.getLogger().handlers if getattr(h, "_reactive_loop", False)]
        assert len(ours) == 1
