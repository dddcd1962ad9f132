"""
Shared client instances — Redis for the RQ job queue.

redis.from_url() does not connect until first use, so importing this module
is always safe (even when Redis is not running during tests).
"""
import redis

from carbitrage.config import REDIS_URL

# RQ pickles job payloads, so responses must stay as bytes (no decode_responses)
redis_client = redis.from_url(REDIS_URL)
