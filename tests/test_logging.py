"""Tests for logging setup."""

import logging

from rich.console import Console
from rich.logging import RichHandler

from glreview_cli.logging import configure_logging, get_logger


class TestLogging:
    def test_logger_hierarchy(self):
        assert get_logger().name == "glreview"
        assert get_logger("gitlab").name == "glreview.gitlab"

    def test_verbose_levels(self):
        assert configure_logging(verbose=True).level == logging.DEBUG
        assert configure_logging().level == logging.WARNING

    def test_single_rich_handler(self):
        console = Console(record=True, width=120)
        configure_logging(console=console)
        logger = configure_logging(console=console)
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], RichHandler)

        get_logger("gitlab").warning("Rate limit exceeded")
        assert "Rate limit exceeded" in console.export_text()
