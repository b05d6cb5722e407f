"""Create or update the facade CloudFormation stack and wait for it to settle."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError

from svcfacade.fetcher import _sanitize_error

if TYPE_CHECKING:
    from mypy_boto3_cloudformation import CloudFormationClient

logger = logging.getLogger(__name__)

FACADE_TAG = {"Key": "COREFW_IS_FACADE", "Value": "yes"}

CREATE_TERMINAL_STATES = (
    "CREATE_COMPLETE",
    "CREATE_FAILED",
    "ROLLBACK_COMPLETE",
    "ROLLBACK_FAILED",
)
UPDATE_TERMINAL_STATES = (
    "UPDATE_COMPLETE",
    "UPDATE_ROLLBACK_COMPLETE",
    "ROLLBACK_COMPLETE",
    "ROLLBACK_FAILED",
    "UPDATE_ROLLBACK_FAILED",
)


class StackError(Exception):
    """Raised when a CloudFormation operation fails or ends in a failure state."""


class StackTimeoutError(StackError):
    """Raised when a stack does not reach an expected state in time."""


def _is_missing_stack(exc: ClientError) -> bool:
    error = exc.response.get("Error", {})
    return error.get("Code") == "ValidationError" and "does not exist" in error.get("Message", "")


def _is_no_op_update(exc: ClientError) -> bool:
    error = exc.response.get("Error", {})
    return error.get("Code") == "ValidationError" and "No updates are to be performed" in error.get(
        "Message", ""
    )


class StackReconciler:
    """Deploys a template to a named stack, creating it on first use.

    Args:
        cf_client: A boto3 CloudFormation client.
        poll_interval: Seconds to wait before each status check.
        max_attempts: Maximum number of status checks per operation.
        sleep: Sleep function, replaceable in tests.
    """

    def __init__(
        self,
        cf_client: CloudFormationClient,
        poll_interval: float = 5,
        max_attempts: int = 30,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = cf_client
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    def describe(self, stack_name: str) -> list[dict[str, Any]]:
        """Return the stack descriptions for *stack_name* (``[]`` if it does not exist)."""
        try:
            return self.client.describe_stacks(StackName=stack_name).get("Stacks", [])
        except ClientError as exc:
            if _is_missing_stack(exc):
                return []
            raise StackError(f"CloudFormation DescribeStacks failed: {_sanitize_error(str(exc))}") from exc
        except BotoCoreError as exc:
            raise StackError(f"CloudFormation DescribeStacks failed: {_sanitize_error(str(exc))}") from exc

    def deploy(self, stack_name: str, template: dict[str, Any]) -> str:
        """Create or update *stack_name* with *template*; return the stack id.

        Raises:
            StackError: If the operation fails or the stack ends in a failure state.
            StackTimeoutError: If the stack does not settle in time.
        """
        existing = self.describe(stack_name)
        if not existing:
            return self.create(stack_name, template)
        return self.update(existing[0]["StackId"], template)

    def create(self, stack_name: str, template: dict[str, Any]) -> str:
        logger.info("Creating CloudFormation Stack '%s' ...", stack_name)
        try:
            response = self.client.create_stack(
                StackName=stack_name,
                TemplateBody=json.dumps(template),
                Tags=[FACADE_TAG],
            )
        except (ClientError, BotoCoreError) as exc:
            raise StackError(f"CloudFormation CreateStack failed: {_sanitize_error(str(exc))}") from exc

        stack_id = response["StackId"]
        logger.info("... The CloudFormation Stack is being created; waiting for success ...")
        state = self.wait_for_states(stack_id, CREATE_TERMINAL_STATES)
        if state != "CREATE_COMPLETE":
            raise StackError(f"CloudFormation create failed; unexpected stack state: {state!r}")
        logger.info("... The CloudFormation Stack has been created successfully!")
        return stack_id

    def update(self, stack_id: str, template: dict[str, Any]) -> str:
        logger.info("Updating CloudFormation Stack '%s' ...", stack_id)
        try:
            self.client.update_stack(StackName=stack_id, TemplateBody=json.dumps(template))
        except ClientError as exc:
            if _is_no_op_update(exc):
                logger.info("... The CloudFormation Stack is already up to date.")
                return stack_id
            raise StackError(f"CloudFormation UpdateStack failed: {_sanitize_error(str(exc))}") from exc
        except BotoCoreError as exc:
            raise StackError(f"CloudFormation UpdateStack failed: {_sanitize_error(str(exc))}") from exc

        logger.info("... The CloudFormation Stack is updating; waiting for success ...")
        state = self.wait_for_states(stack_id, UPDATE_TERMINAL_STATES)
        if state != "UPDATE_COMPLETE":
            raise StackError(f"CloudFormation update failed; unexpected stack state: {state!r}")
        logger.info("... The CloudFormation Stack has updated successfully!")
        return stack_id

    def wait_for_states(
        self,
        stack_id: str,
        states: Iterable[str],
        interval: float | None = None,
        max_attempts: int | None = None,
    ) -> str:
        """Poll *stack_id* until its status is one of *states*.

        Reaching a state only means the stack settled; callers decide whether
        that state is a success.

        Returns:
            The status that was reached.

        Raises:
            StackTimeoutError: If no accepted state is seen within *max_attempts* polls.
            StackError: If the stack disappears or cannot be described.
        """
        accept = set(states)
        interval = self.poll_interval if interval is None else interval
        max_attempts = self.max_attempts if max_attempts is None else max_attempts

        for attempt in range(1, max_attempts + 1):
            self._sleep(interval)
            stacks = self.describe(stack_id)
            if not stacks:
                raise StackError(f"Stack {stack_id!r} no longer exists")
            status = stacks[0]["StackStatus"]
            if status in accept:
                return status
            logger.info("... Still waiting (%s, attempt %d/%d) ...", status, attempt, max_attempts)

        raise StackTimeoutError(
            f"Timed out after {max_attempts} attempts waiting for stack {stack_id!r} "
            f"to reach one of {sorted(accept)}"
        )
