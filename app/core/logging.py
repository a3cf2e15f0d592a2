import logging
import sys
from app.core.config import settings

# Background threads owned by the pipeline; their chatter follows log_level
PIPELINE_LOGGERS = (
    "observability.trace_store",
    "observability.exporter",
    "observability.sink",
)

def configure_logging() -> None:
    """
    Configure logging for the call-logging service.

    Every line carries the service name and environment so output from
    several deployments can be told apart.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        fmt=(
            f"%(asctime)s [%(levelname)s] [{settings.service_name}/{settings.environment}] "
            "[%(name)s] %(message)s"
        ),
        datefmt="%Y-%m-%dT%H:%M:%S%z"
    )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    for name in PIPELINE_LOGGERS:
        logging.getLogger(name).setLevel(settings.log_level)

    # The exporter's own HTTP traffic must not feed back into the logs
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
