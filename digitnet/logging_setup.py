"""
logging_setup.py
~~~~~~~~~~~~~~~~

Logging configuration shared by the API server and the scripts.
"""

import logging
from typing import Optional

from digitnet import config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(
    level: Optional[str] = None,
    production: Optional[bool] = None
) -> None:
    """
    Set up logging based on environment.

    - In production: silence chatty third-party loggers, keep ours at INFO
    - In development: show everything at the configured level
    """
    level_name = (level or config.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    if production is None:
        production = config.IS_PRODUCTION

    logging.basicConfig(level=log_level, format=LOG_FORMAT)

    if production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('digitnet').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)
