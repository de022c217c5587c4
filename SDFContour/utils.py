"""
Utility Functions
=================

This module provides general utility functions used throughout SDFContour.

Functions
---------
configure_logging
    Set up logging for the SDFContour package with customizable
    output format and destinations.
"""

import logging
import SDFContour


def configure_logging(level=logging.INFO, logfile=None):
    """Configure logging for the SDFContour package.

    Sets up a logger with a standard format and optional file output.
    This is called automatically when SDFContour is imported.

    Parameters
    ----------
    level : int, default logging.INFO
        Logging level (e.g., logging.DEBUG, logging.INFO, logging.WARNING).
    logfile : str, optional
        Path to log file. If provided, logs are written to both console
        and file. If None, logs only to console.

    Examples
    --------
    >>> from SDFContour.utils import configure_logging
    >>> import logging
    >>>
    >>> # Trace every pipeline stage and keep a copy on disk
    >>> configure_logging(level=logging.DEBUG, logfile='contour.log')

    Notes
    -----
    The log format is: "HH:MM:SS message"
    """
    logger = logging.getLogger(SDFContour.__name__)
    logger.setLevel(level)

    formatter = logging.Formatter("%(asctime)s %(message)s", datefmt="%H:%M:%S")
    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        logger_handler = logging.StreamHandler()
        logger_handler.setFormatter(formatter)
        logger.addHandler(logger_handler)

    if logfile is not None:
        file_logger_handler = logging.FileHandler(logfile)
        file_logger_handler.setFormatter(formatter)
        logger.addHandler(file_logger_handler)
