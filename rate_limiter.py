"""
Rate limiting for the FitMirror Try-On API.
"""
import asyncio
import math
import time
from typing import Deque, Dict
from collections import deque

from fastapi import Request

from errors import RateLimitExceededError


def get_client_id(request: Request, trust_forwarded: bool = False) -> str:
    """Identify the caller by address; honours X-Forwarded-For behind a trusted proxy."""
    if trust_forwarded:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"


class RateLimiter:
    """Sliding-window request counter per client address."""

    def __init__(self, max_requests: int, window_seconds: int, clock=time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self.client_requests: Dict[str, Deque[float]] = {}
        self.lock = asyncio.Lock()
        self._last_sweep = clock()

    def _sweep(self, now: float):
        """Drop clients whose newest request has left the window."""
        idle = [
            client_id for client_id, timestamps in self.client_requests.items()
            if not timestamps or now - timestamps[-1] >= self.window_seconds
        ]
        for client_id in idle:
            del self.client_requests[client_id]
        self._last_sweep = now

    async def hit(self, client_id: str) -> None:
        """Record a request, or raise RateLimitExceededError if the window is full."""
        async with self.lock:
            now = self.clock()
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)

            timestamps = self.client_requests.setdefault(client_id, deque())

            # Remove old requests outside the window
            while timestamps and now - timestamps[0] >= self.window_seconds:
                timestamps.popleft()

            if len(timestamps) >= self.max_requests:
                retry_after = max(1, math.ceil(self.window_seconds - (now - timestamps[0])))
                raise RateLimitExceededError(
                    "Too many requests, please try again later.", retry_after=retry_after
                )
            timestamps.append(now)
