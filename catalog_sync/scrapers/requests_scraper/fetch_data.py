"""
Authenticated page fetching from Aluno Online.

PortalFetcher enumerates the offered disciplines (following the listing's
pagination to the end) and downloads each discipline's class page. Transient
failures are retried with exponential backoff; permanent ones are raised at
once. A page that bounces to the login form renews the session and is
requested again.
"""

import time
from typing import List

import requests

from ...core.exceptions import (
    AuthError,
    NetworkError,
    ParseError,
    ResourceNotFoundError,
    SessionExpiredError,
)
from ...core.logger import setup_logging
from ...core.models import DisciplineRef
from .html_parser import is_login_page, parse_discipline_list

logger = setup_logging()

LISTING_PATH = '/requisicaoaluno/?requisicao=DisciplinasOferecidas'
MAX_LISTING_PAGES = 500
MAX_SESSION_RENEWALS = 2


class PortalFetcher:
    """Issues authenticated GET requests with timeout and bounded retry."""

    def __init__(self, base_url, timeout=15.0, max_retries=3, retry_backoff=1.0, sleep=time.sleep):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._sleep = sleep

    @property
    def listing_url(self):
        return self.base_url + LISTING_PATH

    def _get(self, session, url) -> str:
        """Single logical GET: retries transient errors, raises on everything else."""
        session.ensure_fresh()
        last_error = ''

        for attempt in range(self.max_retries + 1):
            generation = session.generation
            try:
                response = session.http.get(url, timeout=self.timeout)
            except (requests.ConnectionError, requests.Timeout) as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                status = response.status_code
                if status in (401, 403) or (status == 200 and is_login_page(response.text)):
                    raise SessionExpiredError(f"Session rejected while fetching {url}", generation)
                if status == 200:
                    session.mark_success(generation)
                    return response.text
                if status == 429 or status >= 500:
                    last_error = f"HTTP {status}"
                else:
                    raise ResourceNotFoundError(f"HTTP {status} for {url}", url=url, status_code=status)

            if attempt < self.max_retries:
                delay = self.retry_backoff * (2 ** attempt)
                logger.warning(f"Attempt {attempt + 1} for {url} failed ({last_error}), retrying in {delay:.1f}s")
                self._sleep(delay)

        raise NetworkError(
            f"Gave up on {url} after {self.max_retries + 1} attempts: {last_error}",
            url=url
        )

    def _get_authenticated(self, session, url) -> str:
        for _ in range(MAX_SESSION_RENEWALS):
            try:
                return self._get(session, url)
            except SessionExpiredError as e:
                session.renew(e.generation)

        try:
            return self._get(session, url)
        except SessionExpiredError as e:
            raise AuthError(AuthError.SESSION_REJECTED, str(e)) from e

    def list_disciplines(self, session) -> List[DisciplineRef]:
        """
        Enumerate every offered discipline, across all listing pages.

        Args:
            session: Authenticated PortalSession

        Returns:
            list: DisciplineRef for each discipline, in listing order

        Raises:
            FetchError: If any listing page cannot be retrieved
            ParseError: If a listing page is malformed or the listing is empty
            AuthError: If the session cannot be kept alive
        """
        refs = []
        seen_ids = set()
        visited = set()
        url = self.listing_url

        while url and url not in visited:
            if len(visited) >= MAX_LISTING_PAGES:
                raise ParseError(f"Listing pagination did not end after {MAX_LISTING_PAGES} pages")
            visited.add(url)

            html = self._get_authenticated(session, url)
            page_refs, url = parse_discipline_list(html, self.listing_url)

            for ref in page_refs:
                if ref.discipline_id not in seen_ids:
                    seen_ids.add(ref.discipline_id)
                    refs.append(ref)
            logger.debug(f"Listing page {len(visited)}: {len(page_refs)} disciplines")

        if not refs:
            raise ParseError("Portal listed no disciplines")

        logger.info(f"Enumerated {len(refs)} disciplines over {len(visited)} listing page(s)")
        return refs

    def fetch_class_page(self, session, ref: DisciplineRef) -> str:
        """Download the raw class page of one discipline."""
        return self._get_authenticated(session, ref.url)
