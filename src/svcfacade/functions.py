"""Fetch deployed Lambda functions and index them by version hash."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError

from svcfacade.fetcher import FetchError, _sanitize_error
from svcfacade.models import VERSION_HASH_LENGTH, FunctionRecord

if TYPE_CHECKING:
    from mypy_boto3_lambda import LambdaClient

logger = logging.getLogger(__name__)

PAGE_SIZE = 50
DEFAULT_MAX_PAGES = 200


class FunctionRegistryFetcher:
    """Lists Lambda functions and selects those deployed for a git branch.

    Args:
        lambda_client: A boto3 Lambda client.
        page_size: ``MaxItems`` per ``ListFunctions`` call.
        max_pages: Upper bound on the number of pages requested.
    """

    def __init__(
        self,
        lambda_client: LambdaClient,
        page_size: int = PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> None:
        self.client = lambda_client
        self.page_size = page_size
        self.max_pages = max_pages

    def list_all_functions(self) -> list[dict[str, Any]]:
        """Return every function in the account/region, following ``NextMarker``.

        Raises:
            FetchError: On any AWS API error, or if more than ``max_pages``
                pages would be needed.
        """
        functions: list[dict[str, Any]] = []
        kwargs: dict[str, Any] = {"MaxItems": self.page_size}

        try:
            for _ in range(self.max_pages):
                logger.debug("... Fetching the details for [%d] Lambda Functions ...", self.page_size)
                response = self.client.list_functions(**kwargs)
                page = response.get("Functions", [])
                logger.debug("...... Received the details for [%d] Lambda Functions ...", len(page))
                functions.extend(page)
                marker = response.get("NextMarker")
                if not marker:
                    return functions
                kwargs["Marker"] = marker
        except (ClientError, BotoCoreError) as exc:
            sanitized = _sanitize_error(str(exc))
            raise FetchError(f"Lambda ListFunctions failed: {sanitized}") from exc

        raise FetchError(
            f"Lambda ListFunctions returned more than {self.max_pages} pages "
            f"({self.max_pages * self.page_size} functions); refusing to continue"
        )

    def get_relevant_functions(self, git_branch: str) -> dict[str, FunctionRecord]:
        """Index the functions deployed from *git_branch* by lowercased version hash.

        A function is relevant when its environment carries a 32-character
        ``COREFW_VERSION_HASH`` and a ``COREFW_SERVICE_BRANCH`` equal to
        *git_branch*.  If two functions share a hash the last one wins.

        An empty result is logged as critical but not raised; callers decide
        whether to proceed.
        """
        logger.info("Fetching function data from AWS Lambda ...")
        functions = self.list_all_functions()
        logger.info("Found %d Lambda Functions (total).", len(functions))

        relevant: dict[str, FunctionRecord] = {}
        for item in functions:
            env = (item.get("Environment") or {}).get("Variables") or {}
            version_hash = env.get("COREFW_VERSION_HASH")
            if not isinstance(version_hash, str) or len(version_hash) != VERSION_HASH_LENGTH:
                continue
            if env.get("COREFW_SERVICE_BRANCH") != git_branch:
                continue
            record = FunctionRecord.from_api(item)
            relevant[record.version_hash] = record

        if not relevant:
            logger.critical(
                "No valid functions were found in Lambda for branch '%s'; "
                "the facade will not map any methods!",
                git_branch,
            )
        else:
            logger.info("Found %d relevant Lambda Functions.", len(relevant))
        return relevant
