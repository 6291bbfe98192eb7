"""
HTTP POST Unsubscribe Executor

Handles RFC 8058 one-click unsubscribe: a POST to the List-Unsubscribe https
URL whose form body is `List-Unsubscribe=One-Click`.
"""

from typing import Any, Optional

import requests

from ..unsubscribe.methods import HeaderMethod, MethodKind
from .base_executor import DEFAULT_TIMEOUT, ActionRequest, ActionResult, BaseMethodExecutor
from .http_executor import DEFAULT_USER_AGENT, request_error_result, response_result

ONE_CLICK_FORM = {'List-Unsubscribe': 'One-Click'}


class HttpPostExecutor(BaseMethodExecutor):
    """Execute RFC 8058 one-click unsubscribe requests."""

    def __init__(
        self,
        http_client: Optional[Any] = None,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        rate_limit_delay: float = 0.0,
        dry_run: bool = False
    ):
        super().__init__(timeout, rate_limit_delay, dry_run)
        self.http_client = http_client
        self.user_agent = user_agent

    @property
    def method_kind(self) -> MethodKind:
        return MethodKind.HEADER

    def describe(self, method: HeaderMethod, request: ActionRequest) -> str:
        return f'POST one-click unsubscribe to {method.url}'

    def _perform_execution(self, method: HeaderMethod, request: ActionRequest) -> ActionResult:
        client = self.http_client or requests
        try:
            # Redirects are not followed: a one-click POST must not turn into a GET elsewhere
            response = client.post(
                method.url,
                data=ONE_CLICK_FORM,
                headers={'User-Agent': self.user_agent},
                timeout=self.timeout,
                allow_redirects=False
            )
        except requests.exceptions.RequestException as e:
            return request_error_result(e, self.timeout)
        return response_result(response)
