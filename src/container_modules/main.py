import logging
import sys

from rich.logging import RichHandler

from .launcher import ServiceLauncher
from .settings import get_settings


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(name)s: %(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def run() -> int:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    return ServiceLauncher(settings).start()


if __name__ == "__main__":
    sys.exit(run())
