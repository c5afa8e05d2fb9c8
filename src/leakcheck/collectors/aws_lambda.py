"""
AWS Lambda environment collector for leakcheck.

Lists one page of Lambda functions and resolves each function's
environment variables, which are then searched for leaked secret values.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from leakcheck.collectors.base import AWS_ERRORS, BaseCollector, describe_aws_error
from leakcheck.errors import UpstreamGetError, UpstreamListError
from leakcheck.models import LambdaEnv, SurfacePage

logger = logging.getLogger(__name__)


class BaseLambdaCollector(BaseCollector):
    """
    Shared function listing for Lambda leak surfaces.

    Attributes:
        page_size: MaxItems for list_functions, or None for the API default
    """

    collector_name = "aws_lambda"
    page_size: int | None = None

    def _list_functions(self, token: str) -> tuple[list[dict[str, Any]], str]:
        """
        List one page of functions.

        Args:
            token: Lambda Marker from the previous page

        Returns:
            Tuple of (function configurations, next marker or "")
        """
        lambda_client = self._get_client("lambda")

        params: dict[str, Any] = {}
        if self.page_size is not None:
            params["MaxItems"] = self.page_size
        if token:
            params["Marker"] = token

        try:
            response = lambda_client.list_functions(**params)
        except AWS_ERRORS as e:
            raise UpstreamListError(
                f"unable to list lambda functions: {describe_aws_error(e)}"
            ) from e

        return response.get("Functions", []), response.get("NextMarker") or ""


class LambdaEnvCollector(BaseLambdaCollector):
    """
    Collects environment variables of Lambda functions.

    Functions without a configured environment are skipped. A failure to
    read any function's configuration fails the whole page.
    """

    collector_name = "aws_lambda_env"

    def fetch_page(
        self, token: str = "", cancel_event: threading.Event | None = None
    ) -> SurfacePage:
        """
        Fetch one page of function environments.

        Args:
            token: Lambda Marker from the previous page
            cancel_event: Set when the inbound request is cancelled

        Returns:
            SurfacePage of LambdaEnv entities and the next marker
        """
        functions, next_marker = self._list_functions(token)

        entities = []
        for func in functions:
            self._check_cancelled(cancel_event, func.get("FunctionName"))
            env = self._get_env_for_function(func)
            if env is None:
                continue
            entities.append(env)

        logger.debug(
            f"Fetched environments for {len(entities)} of {len(functions)} functions"
        )
        return SurfacePage(entities=entities, next_token=next_marker)

    def _get_env_for_function(self, func: dict[str, Any]) -> LambdaEnv | None:
        """Get the environment of one function, or None if it has none."""
        lambda_client = self._get_client("lambda")
        function_name = func["FunctionName"]

        try:
            response = lambda_client.get_function_configuration(
                FunctionName=function_name
            )
        except AWS_ERRORS as e:
            raise UpstreamGetError(
                f"unable to get function env: {describe_aws_error(e)}",
                entity=function_name,
            ) from e

        variables = (response.get("Environment") or {}).get("Variables")
        if not variables:
            return None

        return LambdaEnv(
            name=function_name,
            arn=func.get("FunctionArn", ""),
            env=dict(variables),
        )
