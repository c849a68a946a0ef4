import logging
import os
import re
import sys


class SensitiveDataFilter(logging.Filter):
    """Masks credentials that end up in log messages."""

    PATTERNS = [
        (re.compile(r"sk-[a-zA-Z0-9_-]+"), "***API_KEY_MASKED***"),
        (re.compile(r"(api[_-]?key[\"\s:=]+)[\"']?[a-zA-Z0-9_-]+[\"']?", re.IGNORECASE), r"\1***MASKED***"),
        (re.compile(r"(Bearer\s+)[A-Za-z0-9._-]+"), r"\1***MASKED***"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = message
        for pattern, replacement in self.PATTERNS:
            masked = pattern.sub(replacement, masked)
        if masked != message:
            record.msg = masked
            record.args = ()
        return True


def configure_logging(service_name: str = "community_vault") -> None:
    """
    Log to stdout with the level taken from LOG_LEVEL.
    Safe to call more than once.
    """
    level_name = (os.getenv("LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    if getattr(root, "_community_vault_configured", False):
        return

    fmt = os.getenv("LOG_FORMAT") or "%(asctime)s %(levelname)s %(name)s %(message)s"

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    handler.addFilter(SensitiveDataFilter())
    root.addHandler(handler)

    setattr(root, "_community_vault_configured", True)
    logging.getLogger(service_name).debug("logging configured at %s", level_name)
