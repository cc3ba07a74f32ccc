import json
import redis
from urllib.parse import quote_plus

# Logger
from orderdesk.logging.utils import get_app_logger
logger = get_app_logger("redis_wrapper")

# Settings
from orderdesk.config.settings import OrderDeskConfigs
configs = OrderDeskConfigs()

REDIS_URL = configs.REDIS_URL


def redis_key(*parts) -> str:
    """Join key segments, encoding each so keys contain only URL-safe chars."""
    return ":".join(quote_plus(str(part), safe='') for part in parts)


class RedisJSONWrapper:
    def __init__(self, redis_uri=REDIS_URL, database=None):
        if database is not None:
            redis_uri = f"{redis_uri}/{database}"
        try:
            self.redis_client = redis.from_url(redis_uri, socket_connect_timeout=1)
            self.redis_client.ping()
            self.connected = True
        except redis.exceptions.RedisError as e:
            logger.error(f"redis_connect_failed | uri={redis_uri} error={e}")
            self.redis_client = None
            self.connected = False

    def set_with_ttl(self, key, data, ttl_seconds: int):
        """Store data as JSON with a TTL; SETEX keeps value and expiry atomic."""
        try:
            value = json.dumps(data)
            if isinstance(ttl_seconds, int) and ttl_seconds > 0:
                self.redis_client.setex(key, ttl_seconds, value)
            else:
                self.redis_client.set(key, value)
        except redis.exceptions.RedisError as e:
            logger.error(f"redis_set_with_ttl_error | key={key} error={e}")

    def set_if_not_exists_with_ttl(self, key, data, ttl_seconds: int) -> bool:
        """
        Atomically set a key with TTL only if it doesn't exist (SETNX behavior).

        Returns:
            True if key was set (didn't exist before)
            False if key already exists
        """
        value = json.dumps(data)
        result = self.redis_client.set(key, value, nx=True, ex=ttl_seconds)
        return bool(result)

    def get(self, key):
        try:
            data = self.redis_client.get(key)
        except redis.exceptions.RedisError as e:
            logger.error(f"redis_get_error | key={key} error={e}")
            return None
        if data:
            return json.loads(data)
        return None

    def delete(self, key):
        return self.redis_client.delete(key) > 0
