import logging

from app.core.config import settings

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_configured = False


def configure_logging(level: str | None = None) -> None:
    """Install the root handler once. Payment modules log under app.payrexx.*."""
    global _configured
    if _configured:
        return
    logging.basicConfig(level=(level or settings.LOG_LEVEL).upper(), format=_FORMAT)
    # requests/urllib3 are chatty at DEBUG and would echo signed gateway URLs
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    _configured = True
