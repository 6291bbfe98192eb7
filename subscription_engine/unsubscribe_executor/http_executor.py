"""
HTTP GET Unsubscribe Executor

Handles Link methods (List-Unsubscribe or body URLs) with a plain GET.
"""

from typing import Any, Optional

import requests

from ..unsubscribe.methods import LinkMethod, MethodKind
from .base_executor import DEFAULT_TIMEOUT, ActionRequest, ActionResult, BaseMethodExecutor

DEFAULT_USER_AGENT = 'SubscriptionEngine/0.7 (+unsubscribe)'


def response_result(response: Any) -> ActionResult:
    """Map an HTTP response to a result: any 2xx is success."""
    if 200 <= response.status_code < 300:
        return ActionResult(success=True, status_code=response.status_code,
                            message='Successfully unsubscribed')
    return ActionResult.failed(f'HTTP {response.status_code}: {(response.text or "")[:200]}',
                               status_code=response.status_code)


def request_error_result(error: requests.exceptions.RequestException, timeout: float) -> ActionResult:
    if isinstance(error, requests.exceptions.Timeout):
        return ActionResult.failed(f'Request timed out after {timeout} seconds')
    if isinstance(error, requests.exceptions.ConnectionError):
        return ActionResult.failed(f'Connection error: {error}')
    if isinstance(error, (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema,
                          requests.exceptions.InvalidSchema)):
        return ActionResult.failed(f'Malformed target: {error}')
    return ActionResult.failed(f'Request error: {error}')


class HttpGetExecutor(BaseMethodExecutor):
    """Execute unsubscribe requests via HTTP GET method."""

    def __init__(
        self,
        http_client: Optional[Any] = None,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        rate_limit_delay: float = 0.0,
        dry_run: bool = False
    ):
        """
        Initialize HTTP GET executor.

        Args:
            http_client: requests.Session compatible client (default: requests module)
            timeout: Request timeout in seconds
            user_agent: User-Agent header for requests
            rate_limit_delay: Delay in seconds between requests
            dry_run: If True, simulate without actual execution
        """
        super().__init__(timeout, rate_limit_delay, dry_run)
        self.http_client = http_client
        self.user_agent = user_agent

    @property
    def method_kind(self) -> MethodKind:
        return MethodKind.LINK

    def describe(self, method: LinkMethod, request: ActionRequest) -> str:
        return f'GET {method.url}'

    def _perform_execution(self, method: LinkMethod, request: ActionRequest) -> ActionResult:
        client = self.http_client or requests
        try:
            response = client.get(
                method.url,
                headers={'User-Agent': self.user_agent},
                timeout=self.timeout,
                allow_redirects=True
            )
        except requests.exceptions.RequestException as e:
            return request_error_result(e, self.timeout)
        return response_result(response)
