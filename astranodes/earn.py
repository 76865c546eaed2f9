"""Short-lived one-time tokens proving an ad-view session before coins can be claimed."""
import logging
import math
import secrets
import threading
import time

log = logging.getLogger(__name__)

MIN_VIEW_SECONDS = 0
TOKEN_TTL_SECONDS = 90


class EarnTokenStore:

    def __init__(self, min_view=MIN_VIEW_SECONDS, ttl=TOKEN_TTL_SECONDS, clock=time.monotonic):
        self.min_view = min_view
        self.ttl = ttl
        self.clock = clock
        self._tokens = {}
        self._lock = threading.Lock()

    def purge(self):
        now = self.clock()
        with self._lock:
            for token in [t for t, d in self._tokens.items() if d['expires_at'] < now]:
                del self._tokens[token]

    def issue(self, user_id) -> str:
        self.purge()
        token = secrets.token_hex(32)
        now = self.clock()
        with self._lock:
            self._tokens[token] = {
                'user_id': user_id,
                'valid_after': now + self.min_view,
                'expires_at': now + self.ttl,
            }
        return token

    def consume(self, token, user_id):
        """Return (valid, reason). A valid token is removed so it can never be replayed."""
        if not token or not isinstance(token, str):
            return False, 'No earn token provided'

        with self._lock:
            data = self._tokens.get(token)
            if not data:
                return False, 'Token not found or already used'
            if data['user_id'] != user_id:
                return False, 'Token user mismatch'

            now = self.clock()
            if now < data['valid_after']:
                wait = math.ceil(data['valid_after'] - now)
                return False, f'Token not yet valid, wait {wait}s more'
            if now > data['expires_at']:
                del self._tokens[token]
                return False, 'Token expired, please reload and try again'

            del self._tokens[token]
        return True, None

    def __len__(self):
        return len(self._tokens)
