"""Polling driver for asynchronous provider jobs (video rendering)."""

from __future__ import annotations

import json
import logging
import time
from typing import Callable, Optional

import requests

from ..errors import FetchError, JobTimeoutError, ProviderError, ResultMissingError
from ..types import GenerationJob

logger = logging.getLogger(__name__)

RefreshJob = Callable[[GenerationJob], GenerationJob]
Fetcher = Callable[[str], bytes]


class JobPoller:
    """Waits for a submitted job, then downloads the artifact it produced.

    The loop sleeps ``poll_interval_sec`` before every status query, mirroring
    how the video endpoint is meant to be polled. ``timeout_sec=None`` polls
    until the provider answers, otherwise ``JobTimeoutError`` is raised once
    the deadline passes.
    """

    def __init__(
        self,
        poll_interval_sec: float = 10.0,
        timeout_sec: Optional[float] = 900.0,
        api_key: Optional[str] = None,
        request_timeout: int = 120,
        fetcher: Optional[Fetcher] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._poll_interval = poll_interval_sec
        self._timeout = timeout_sec
        self._api_key = api_key
        self._request_timeout = request_timeout
        self._fetcher = fetcher or self._http_fetch
        self._sleep = sleep
        self._clock = clock

    def run(self, job: GenerationJob, refresh: RefreshJob, *, label: str) -> bytes:
        """Drive ``job`` to completion and return the artifact bytes."""
        finished = self.wait(job, refresh, label=label)
        uri = self.locate(finished, label=label)
        logger.info("Fetching generated artifact for %s", label)
        return self.fetch(uri, label=label)

    def wait(self, job: GenerationJob, refresh: RefreshJob, *, label: str) -> GenerationJob:
        started = self._clock()
        attempts = 0
        while not job.done:
            if self._timeout is not None and self._clock() - started >= self._timeout:
                raise JobTimeoutError(
                    f"Job for {label} did not finish within {self._timeout:g}s ({attempts} polls)."
                )
            self._sleep(self._poll_interval)
            job = refresh(job)
            attempts += 1
            logger.info("Polling %s... Status: %s", label, "Done" if job.done else "In Progress")
        return job

    @staticmethod
    def locate(job: GenerationJob, *, label: str) -> str:
        """Return the download URI of a finished job."""
        if job.error:
            body = job.error if isinstance(job.error, dict) else {"message": str(job.error)}
            raise ProviderError(json.dumps({"error": body}))
        if not job.result_uri:
            raise ResultMissingError(f"Failed to get video download link for {label}.")
        return job.result_uri

    def fetch(self, uri: str, *, label: str) -> bytes:
        try:
            return self._fetcher(uri)
        except (FetchError, requests.RequestException) as exc:
            raise FetchError(f"Failed to download video file for {label}. {exc}") from exc

    def _http_fetch(self, uri: str) -> bytes:
        # The download link only works with the API key appended.
        params = {"key": self._api_key} if self._api_key else None
        response = requests.get(uri, params=params, timeout=self._request_timeout)
        if not response.ok:
            raise FetchError(f"Status: {response.status_code} {response.reason}")
        return response.content
