from loguru import logger
import sys
from sqlgateway.config.settings import settings

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} - {message}"

def setup_logging(level: str = None):
    """Configure Loguru logging for the gateway.

    ``diagnose`` stays off: loguru would otherwise print local variables in
    tracebacks, and those include decoded private key bytes and signed JWTs.
    """
    level = (level or ("DEBUG" if settings.debug else settings.log_level)).upper()
    logger.remove()
    logger.add(sys.stdout,
               level=level,
               format=LOG_FORMAT,
               backtrace=False,
               diagnose=False,
               enqueue=True)
    logger.debug(f"Logging configured at {level}")
