
import logging
import os
from datetime import datetime

def setup_logger(name, log_dir=None):
    """
    Logger for the incident map console: DEBUG and up to a dated file, INFO and up to the console

    Parameters
    name (str) : Module name, usually __name__
    log_dir (str) : Folder for the incident_map_<mmddyyyy> log files. Defaults to $INCIDENT_MAP_LOG_DIR or 'logs'

    Returns:
    logging.Logger : Configured Logger Instance, shared across Streamlit reruns
    """

    log_dir = log_dir or os.getenv('INCIDENT_MAP_LOG_DIR', 'logs')
    os.makedirs(log_dir, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    # Streamlit reruns re-import modules, don't stack handlers
    if logger.handlers:
        return logger

    # File: full detail, one file per day shared by app, feed and scripts
    log_file = os.path.join(log_dir, f'incident_map_{datetime.now().strftime("%m%d%Y")}')
    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s : %(levelname)s : %(name)s : %(funcName)s : %(lineno)d : %(message)s'
    ))

    # Console: what the Streamlit server log shows
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s'))

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
    logger.propagate = False

    return logger
