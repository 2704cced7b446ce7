import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO", gateway_id: Optional[str] = None) -> None:
    """
    Configure root logging for the sensor agent.

    With a gateway_id every record is tagged with it, so logs from several
    site agents can be merged and still be told apart.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    fmt = LOG_FORMAT
    if gateway_id:
        tag = gateway_id.replace("%", "%%")
        fmt = f"%(asctime)s - [{tag}] - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(level=numeric_level, format=fmt)
