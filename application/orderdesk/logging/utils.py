"""
Logging utilities for Order Desk (FastAPI)
"""
import logging

from orderdesk.logging.config import LoggingConfig
from orderdesk.logging.handlers import get_app_handler, get_audit_handler, get_local_file_handler
from orderdesk.logging.filters import RequestContextFilter, BusinessContextFilter
from orderdesk.logging.slack_handler import slack_handler

AUDIT_LOGGER_NAME = "orderdesk.audit"


def get_app_logger(name: str = "orderdesk"):
    logger = logging.getLogger(name)
    if not logger.handlers:
        # central handler or local file handler per module
        handler = get_app_handler() if LoggingConfig.FIREHOSE_ENABLED else get_local_file_handler(name.replace('.', '_'))
        handler.addFilter(RequestContextFilter())
        handler.addFilter(BusinessContextFilter())
        logger.addHandler(handler)
        logger.addHandler(slack_handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False
    return logger


def get_audit_logger():
    logger = logging.getLogger(AUDIT_LOGGER_NAME)
    if not logger.handlers:
        handler = get_audit_handler()
        handler.addFilter(RequestContextFilter())
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False
    return logger


def initialize_logging():
    is_valid, message = LoggingConfig.is_valid_config()
    if not is_valid:
        print(f"Warning: {message}")
    print("Logging system initialized (order-desk)")
