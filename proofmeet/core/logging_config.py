# proofmeet/core/logging_config.py
import logging


def configure_logging(level: str = "INFO") -> None:
    """
    Apply the service-wide log format once, at application start.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
