"""
Static acquisition: one HTTP GET plus normalisation, no script execution.

PDF bodies are detected by content type or signature and reduced to their
page text and document info.
"""

from __future__ import annotations

from typing import Optional

import structlog
from pypdf.errors import PyPdfError

from prospect.errors import ErrorKind, FetchError
from prospect.protocols import FetchMethod, FetchRequest, FetchResult, PerformanceRecord, ProxyDescriptor

from .http_client import HttpClient
from .normalizer import is_pdf, normalize_document, normalize_pdf

logger = structlog.get_logger(__name__)


class StaticFetcher:
    method = FetchMethod.STATIC

    def __init__(self, client: HttpClient):
        self.client = client

    async def fetch(self, request: FetchRequest, proxy: Optional[ProxyDescriptor] = None) -> FetchResult:
        """Fetch ``request.url`` over plain HTTP.

        Raises:
            FetchError: ``network``, ``timeout`` or ``http`` (non-2xx status,
                redirect budget exceeded); ``validation`` for an unreadable PDF.
        """
        response = await self.client.get(
            request.url,
            headers=request.headers,
            proxy=proxy.as_url() if proxy else None,
            auth=request.auth,
            timeout=request.timeout,
        )

        if not response.ok:
            logger.debug("Non-success status", url=request.url, status=response.status)
            raise FetchError(
                ErrorKind.HTTP,
                request.url,
                f"HTTP {response.status}",
                status_code=response.status,
                attempted_methods=[self.method.value],
                retry_after=response.retry_after(),
            )

        if is_pdf(response.content_type, response.body):
            try:
                page = normalize_pdf(response.body, self.client.config.pdf_max_pages)
            except PyPdfError as e:
                raise FetchError(
                    ErrorKind.VALIDATION,
                    request.url,
                    f"unreadable PDF: {e}",
                    status_code=response.status,
                    attempted_methods=[self.method.value],
                ) from e
            body = page.markdown
            logger.debug("PDF extracted", url=request.url, title=page.metadata.title, chars=len(page.text))
        else:
            body = response.text()
            page = normalize_document(body, response.content_type, response.final_url)

        return FetchResult(
            url=request.url,
            final_url=response.final_url,
            method=self.method,
            status_code=response.status,
            content_type=response.content_type,
            content=body,
            text=page.text,
            markdown=page.markdown,
            links=page.links,
            images=page.images,
            metadata=page.metadata,
            performance=PerformanceRecord(
                load_time_ms=response.elapsed_ms, method=self.method, proxy=proxy.url if proxy else None
            ),
        )
