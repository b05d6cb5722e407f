"""Assemble the facade API CloudFormation template from endpoints and functions."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from svcfacade import templates
from svcfacade.endpoints import EndpointMap
from svcfacade.models import FunctionRecord
from svcfacade.templates import format_ref_name

logger = logging.getLogger(__name__)

API_REF_NAME = "ApiGatewayRestApi"


def path_segments(path: str) -> list[str]:
    """Split an HTTP path into its non-empty segments."""
    return [segment for segment in path.split("/") if segment]


def resource_ref_name(path: str) -> str:
    return format_ref_name("AagResource", path)


def method_ref_name(path: str, http_method: str) -> str:
    return format_ref_name("AagMethod", path, http_method.capitalize())


def permission_ref_name(function_name: str) -> str:
    return format_ref_name(None, function_name, "AagPerms")


class ResourceGraphAssembler:
    """Builds the CloudFormation template for the aggregated REST API.

    Args:
        api_name: Name given to the ``AWS::ApiGateway::RestApi``.
        global_variables: Variables available to every fragment; must include
            ``gitBranch`` (used as the stage name).
        aws_region: Region used in the ``ApiRootUrl`` output.
        clock: Returns the current time; used to name the deployment resource.
    """

    def __init__(
        self,
        api_name: str,
        global_variables: Mapping[str, Any],
        aws_region: str = "us-east-1",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.variables: dict[str, Any] = {
            **global_variables,
            "apiName": api_name,
            "apiRefName": API_REF_NAME,
            "awsRegion": aws_region,
        }
        self._clock = clock or (lambda: datetime.now(UTC))

    def _vars(self, **extra: Any) -> dict[str, Any]:
        return {**self.variables, **extra}

    def assemble(
        self,
        endpoints: EndpointMap,
        functions: Mapping[str, FunctionRecord],
    ) -> dict[str, Any]:
        """Return the complete template for *endpoints* backed by *functions*.

        Args:
            endpoints: ``{path: {method: EndpointDescriptor}}``.
            functions: Relevant functions keyed by lowercased version hash.
        """
        logger.info("Generating the CloudFormation Template ...")
        template = templates.render(templates.OUTER, self.variables)
        resources: dict[str, Any] = template["Resources"]

        resources[API_REF_NAME] = templates.render(templates.REST_API, self.variables)
        self._add_path_resources(endpoints, resources)
        method_refs = self._add_methods(endpoints, functions, resources)
        self._add_permissions(functions, resources)
        self._add_deployment(method_refs, resources)

        logger.info(
            "Generated %d resources (%d methods)", len(resources), len(method_refs)
        )
        return template

    def _add_path_resources(self, endpoints: EndpointMap, resources: dict[str, Any]) -> None:
        """Add one ``AWS::ApiGateway::Resource`` per distinct path prefix."""
        for path in endpoints:
            full_path = ""
            parent_ref: str | None = None
            for depth, part in enumerate(path_segments(path)):
                full_path = part if depth == 0 else f"{full_path}/{part}"
                ref_name = resource_ref_name(full_path)
                if ref_name not in resources:
                    fragment = templates.ROOT_RESOURCE if depth == 0 else templates.CHILD_RESOURCE
                    resources[ref_name] = templates.render(
                        fragment, self._vars(parentRefName=parent_ref, pathPart=part)
                    )
                parent_ref = ref_name

    def _add_methods(
        self,
        endpoints: EndpointMap,
        functions: Mapping[str, FunctionRecord],
        resources: dict[str, Any],
    ) -> list[str]:
        """Add one ``AWS::ApiGateway::Method`` per endpoint with a known function.

        Returns:
            The reference names of the methods that were added.
        """
        method_refs: list[str] = []
        for path, methods in endpoints.items():
            for http_method, endpoint in methods.items():
                record = functions.get(endpoint.version_hash)
                if record is None:
                    logger.warning(
                        "Skipping method mapping for '%s %s'; could not find a valid "
                        "Lambda function for version hash %s.",
                        http_method.upper(), path, endpoint.version_hash,
                    )
                    continue
                ref_name = method_ref_name(path, http_method)
                method = templates.render(
                    templates.METHOD,
                    self._vars(
                        httpMethod=http_method.upper(),
                        resourceRefName=resource_ref_name(path),
                        lambdaFunctionArn=record.function_arn,
                        lambdaFunctionName=record.function_name,
                    ),
                )
                if not path_segments(path):
                    # "/" has no resource of its own; attach to the API root.
                    method["Properties"]["ResourceId"] = {
                        "Fn::GetAtt": [API_REF_NAME, "RootResourceId"]
                    }
                resources[ref_name] = method
                method_refs.append(ref_name)
        return method_refs

    def _add_permissions(
        self, functions: Mapping[str, FunctionRecord], resources: dict[str, Any]
    ) -> None:
        # Every relevant function gets a permission, mapped to a method or not.
        for record in functions.values():
            resources[permission_ref_name(record.function_name)] = templates.render(
                templates.PERMISSION,
                self._vars(
                    lambdaFunctionArn=record.function_arn,
                    lambdaFunctionName=record.function_name,
                ),
            )

    def _add_deployment(self, method_refs: list[str], resources: dict[str, Any]) -> None:
        now = self._clock()
        ref_name = format_ref_name("AagDeployment", now.strftime("%Y-%m-%d-%H-%M-%S-%f"))
        deployment = templates.render(
            templates.DEPLOYMENT,
            self._vars(
                description=f"Generated by the svcfacade Service Aggregator on {now.isoformat()}"
            ),
        )
        deployment["DependsOn"] = list(method_refs)
        resources[ref_name] = deployment
