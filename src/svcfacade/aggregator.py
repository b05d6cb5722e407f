"""The service aggregation pipeline: metadata -> endpoints -> template -> stack."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from svcfacade.assembler import ResourceGraphAssembler
from svcfacade.config import AggregationConfig
from svcfacade.context import ServiceContext
from svcfacade.endpoints import EndpointMap, build_endpoint_map
from svcfacade.fetcher import ServiceMetadataFetcher, make_client
from svcfacade.functions import FunctionRegistryFetcher
from svcfacade.models import FunctionRecord, ServiceBundle
from svcfacade.stack import StackReconciler

logger = logging.getLogger(__name__)


@dataclass
class AggregationResult:
    """Everything produced by one aggregation run."""

    bundles: list[ServiceBundle]
    endpoints: EndpointMap
    functions: dict[str, FunctionRecord]
    template: dict[str, Any]
    stack_id: str | None = None
    resolved_count: int = 0
    method_count: int = 0


class ServiceAggregator:
    """Stitches every published service into one API Gateway stack.

    Collaborators are built from *config* unless passed in explicitly.

    Args:
        context: The facade project's service context (provides ``gitBranch``).
        config: The loaded ``aggregation-config.yml``.
        profile: AWS named profile used for default clients.
        s3_client / lambda_client / cf_client: Optional pre-built boto3 clients.
        clock: Passed to the assembler to name the deployment resource.
        sleep: Passed to the stack reconciler between status checks.
    """

    def __init__(
        self,
        context: ServiceContext,
        config: AggregationConfig,
        profile: str | None = None,
        s3_client: Any = None,
        lambda_client: Any = None,
        cf_client: Any = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        region = config.source.aws_region
        self.context = context
        self.config = config
        self.metadata = ServiceMetadataFetcher(
            s3_client or make_client("s3", profile, region),
            bucket=config.source.bucket,
            prefix=config.source.root_path,
        )
        self.registry = FunctionRegistryFetcher(
            lambda_client or make_client("lambda", profile, region)
        )
        self._cf_client = cf_client
        self._profile = profile
        self._clock = clock
        self._sleep = sleep

    @property
    def reconciler(self) -> StackReconciler:
        if self._cf_client is None:
            self._cf_client = make_client(
                "cloudformation", self._profile, self.config.source.aws_region
            )
        return StackReconciler(
            self._cf_client,
            poll_interval=self.config.facade.poll_interval,
            max_attempts=self.config.facade.max_poll_attempts,
            sleep=self._sleep,
        )

    def build(self) -> AggregationResult:
        """Fetch metadata and functions and assemble the template (no deployment)."""
        git_branch = self.context.git_branch

        bundles = self.metadata.fetch_all()
        endpoint_result = build_endpoint_map(bundles)
        functions = self.registry.get_relevant_functions(git_branch)

        assembler = ResourceGraphAssembler(
            api_name=self.config.facade.name,
            global_variables=self.context.variables(),
            aws_region=self.config.source.aws_region,
            clock=self._clock,
        )
        template = assembler.assemble(endpoint_result.endpoints, functions)
        method_count = sum(
            1 for res in template["Resources"].values() if res["Type"] == "AWS::ApiGateway::Method"
        )
        return AggregationResult(
            bundles=bundles,
            endpoints=endpoint_result.endpoints,
            functions=functions,
            template=template,
            resolved_count=endpoint_result.resolved_count,
            method_count=method_count,
        )

    def execute(self, dry_run: bool = False) -> AggregationResult:
        """Run the full pipeline; with *dry_run* the stack is left untouched."""
        logger.info("The Service Aggregator is starting up ...")
        result = self.build()
        if dry_run:
            logger.info("Dry run: skipping deployment of stack '%s'", self.config.facade.cf_stack_name)
            return result
        result.stack_id = self.reconciler.deploy(self.config.facade.cf_stack_name, result.template)
        logger.info("The Service Aggregator has finished.")
        return result
