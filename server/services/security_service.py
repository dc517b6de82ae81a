"""
Security Service

Per-user rate limiting and audit logging for the focus scheduler tools
and HTTP routes.
"""

import json
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Deque, Dict, Optional, Tuple

from fastmcp.utilities.logging import get_logger


@dataclass(frozen=True)
class RateLimit:
    max_requests: int
    window_seconds: int


DEFAULT_RATE_LIMITS = {
    'read': RateLimit(max_requests=100, window_seconds=60),
    'write': RateLimit(max_requests=20, window_seconds=60),
    'suggest': RateLimit(max_requests=30, window_seconds=3600),
    'general': RateLimit(max_requests=200, window_seconds=60),
}


class SecurityService:
    """
    Enforces sliding-window rate limits per user and operation type, and
    keeps an append-only audit trail of suggestion runs, confirmations and
    rejected requests.
    """

    def __init__(self, data_dir: Path, rate_limits: Optional[Dict[str, RateLimit]] = None):
        """
        Initialize security service.

        Args:
            data_dir: Directory for storing audit logs
            rate_limits: Operation type -> RateLimit, defaults to DEFAULT_RATE_LIMITS
        """
        self.logger = get_logger("SecurityService")
        self.audit_log_dir = Path(data_dir) / "audit_logs"
        self.audit_log_dir.mkdir(parents=True, exist_ok=True)
        self.rate_limits = dict(rate_limits or DEFAULT_RATE_LIMITS)

        # "user_id:operation_type" -> request timestamps, oldest first
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)

    def check_rate_limit(self, user_id: str, operation_type: str = 'general') -> Tuple[bool, Optional[str]]:
        """
        Record a request and check it against the operation's limit.

        Unknown operation types fall under 'general'.

        Returns:
            Tuple of (is_allowed, error_message)
        """
        if operation_type not in self.rate_limits:
            operation_type = 'general'
        limit = self.rate_limits[operation_type]

        now = time.monotonic()
        requests = self._requests[f"{user_id}:{operation_type}"]
        while requests and now - requests[0] >= limit.window_seconds:
            requests.popleft()

        if len(requests) >= limit.max_requests:
            self.log_audit_event(
                'rate_limit_exceeded',
                user_id,
                {
                    'operation_type': operation_type,
                    'limit': limit.max_requests,
                    'window_seconds': limit.window_seconds,
                },
                severity='warning',
            )
            return False, (
                f"Rate limit exceeded. Maximum {limit.max_requests} {operation_type} "
                f"operations per {limit.window_seconds} seconds."
            )

        requests.append(now)
        return True, None

    def log_audit_event(self, event_type: str, user_id: str, details: Dict, severity: str = 'info'):
        """
        Log an audit event and append it to today's JSONL audit file (UTC).

        Args:
            event_type: e.g. 'suggest_operation', 'write_operation', 'rate_limit_exceeded'
            user_id: User identifier
            details: Event details, must be JSON serializable
            severity: 'info', 'warning' or 'error'
        """
        now = datetime.now(timezone.utc)
        message = f"[AUDIT] {event_type} | user={user_id} | {details}"
        if severity == 'error':
            self.logger.error(message)
        elif severity == 'warning':
            self.logger.warning(message)
        else:
            self.logger.info(message)

        entry = {
            'timestamp': now.isoformat(),
            'event_type': event_type,
            'user_id': user_id,
            'severity': severity,
            'details': details,
        }
        log_file = self.audit_log_dir / f"audit_{now.date().isoformat()}.jsonl"
        try:
            with open(log_file, 'a') as f:
                f.write(json.dumps(entry) + '\n')
        except OSError as e:
            self.logger.error(f"Failed to write audit log: {e}")
