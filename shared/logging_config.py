import logging
import sys
import os
from logging.handlers import RotatingFileHandler

# Log directory, overridable for tests and packaged installs
LOG_DIR = os.environ.get("FSHARE_LOG_DIR", os.path.join(os.getcwd(), "logs"))

# Configure logging format
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

def setup_logger(name: str, log_file: str = None) -> logging.Logger:
    """
    Set up a logger with both file and console handlers
    
    Args:
        name: Name of the logger (usually __name__)
        log_file: Optional specific log file name, defaults to module name
    
    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        # Already configured by an earlier import
        return logger
    logger.setLevel(logging.DEBUG)
    
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    
    if log_file is None:
        log_file = f"{name.split('.')[-1]}.log"
    
    try:
        os.makedirs(LOG_DIR, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(LOG_DIR, log_file),
            maxBytes=5*1024*1024,  # 5MB
            backupCount=3,
            encoding='utf-8'
        )
    except OSError as e:
        logger.warning(f"File logging disabled for {name}: {e}")
    else:
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    
    return logger
