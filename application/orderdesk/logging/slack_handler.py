import logging
import os
from datetime import datetime, timezone

import requests


class SlackErrorHandler(logging.Handler):
    """Sends ERROR and CRITICAL logs to Slack"""

    def __init__(self):
        super().__init__(level=logging.ERROR)
        self.webhook = os.getenv('SLACK_WEBHOOK_URL')
        self.enabled = bool(self.webhook)

    def emit(self, record):
        if not self.enabled:
            return
        env = os.getenv('APPLICATION_ENVIRONMENT', 'LOCAL').upper()
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        lines = [
            f":mag: {env}-MONITOR order-desk alert",
            "",
            f"- :clock1: Timestamp: {ts}",
            f"- :triangular_flag_on_post: Level: *{record.levelname}*",
            f"- :warning: Logger: {record.name}",
            f"- :file_folder: Module: {record.module}",
            f"- :pushpin: Function: {record.funcName}",
            f"- :straight_ruler: Line Number: {record.lineno}",
            f"- :package: Order: {getattr(record, 'order_id', '') or '-'}",
            "",
            "```" + str(record.getMessage()) + "```",
        ]
        try:
            requests.post(self.webhook, json={"text": "\n".join(lines)}, timeout=2)
        except requests.RequestException:
            self.handleError(record)


slack_handler = SlackErrorHandler()
