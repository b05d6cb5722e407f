"""Tests for svcfacade.assembler."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

import pytest
from conftest import ORDERS_HASH, USERS_HASH

from svcfacade.assembler import (
    API_REF_NAME,
    ResourceGraphAssembler,
    method_ref_name,
    path_segments,
    permission_ref_name,
    resource_ref_name,
)
from svcfacade.models import EndpointDescriptor, FunctionRecord

FIXED_NOW = datetime(2024, 1, 15, 10, 30, 0, 123456, tzinfo=UTC)
DEPLOYMENT_REF = "AagDeployment20240115103000123456"


def _endpoint(path: str, method: str = "get", version_hash: str = USERS_HASH) -> EndpointDescriptor:
    return EndpointDescriptor(
        name=f"fn-{method}",
        short_name=method,
        description=None,
        path=path,
        method=method,
        service="svc",
        version_hash=version_hash,
    )


def _endpoint_map(*endpoints: EndpointDescriptor) -> dict:
    result: dict = {}
    for endpoint in endpoints:
        result.setdefault(endpoint.path, {})[endpoint.method] = endpoint
    return result


def _record(name: str, version_hash: str) -> FunctionRecord:
    return FunctionRecord(
        function_arn=f"arn:aws:lambda:us-east-1:123456789012:function:{name}",
        function_name=name,
        version_hash=version_hash,
        branch="master",
    )


@pytest.fixture()
def assembler() -> ResourceGraphAssembler:
    return ResourceGraphAssembler(
        api_name="facade-master",
        global_variables={"gitBranch": "master", "serviceName": "facade"},
        aws_region="eu-west-1",
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture()
def functions() -> dict[str, FunctionRecord]:
    return {
        USERS_HASH: _record("users-fn", USERS_HASH),
        ORDERS_HASH: _record("orders-fn", ORDERS_HASH),
    }


class TestRefNames:
    def test_path_segments_ignore_empty(self):
        assert path_segments("/a//b/") == ["a", "b"]
        assert path_segments("/") == []

    def test_resource_ref_name(self):
        assert resource_ref_name("/users/{id}") == "AagResourceUsersIdVar"

    def test_method_ref_name(self):
        assert method_ref_name("/users", "delete") == "AagMethodUsersDelete"

    def test_permission_ref_name(self):
        assert permission_ref_name("my-function_01") == "MyFunction01AagPerms"


class TestAssemble:
    def test_outer_template(self, assembler, functions):
        template = assembler.assemble({}, functions)
        assert template["AWSTemplateFormatVersion"] == "2010-09-09"
        url_parts = template["Outputs"]["ApiRootUrl"]["Value"]["Fn::Join"][1]
        assert {"Ref": API_REF_NAME} in url_parts
        assert ".execute-api.eu-west-1." in url_parts
        assert "/master" in url_parts

    def test_rest_api(self, assembler, functions):
        api = assembler.assemble({}, functions)["Resources"][API_REF_NAME]
        assert api["Type"] == "AWS::ApiGateway::RestApi"
        assert api["Properties"]["Name"] == "facade-master"

    def test_shared_prefixes_are_deduplicated(self, assembler, functions):
        endpoints = _endpoint_map(_endpoint("/a/b"), _endpoint("/a/c"), _endpoint("/a"))
        resources = assembler.assemble(endpoints, functions)["Resources"]

        path_resources = {
            ref: res for ref, res in resources.items() if res["Type"] == "AWS::ApiGateway::Resource"
        }
        assert set(path_resources) == {"AagResourceA", "AagResourceAB", "AagResourceAC"}
        assert path_resources["AagResourceA"]["Properties"]["ParentId"] == {
            "Fn::GetAtt": [API_REF_NAME, "RootResourceId"]
        }
        assert path_resources["AagResourceAB"]["Properties"]["ParentId"] == {"Ref": "AagResourceA"}
        assert path_resources["AagResourceAC"]["Properties"]["PathPart"] == "c"

    def test_deep_paths_chain_parents(self, assembler, functions):
        resources = assembler.assemble(_endpoint_map(_endpoint("/x/y/z")), functions)["Resources"]
        assert resources["AagResourceXYZ"]["Properties"]["ParentId"] == {"Ref": "AagResourceXY"}
        assert resources["AagResourceXY"]["Properties"]["ParentId"] == {"Ref": "AagResourceX"}

    def test_method_wiring(self, assembler, functions):
        endpoints = _endpoint_map(_endpoint("/orders", "post", ORDERS_HASH))
        resources = assembler.assemble(endpoints, functions)["Resources"]

        method = resources["AagMethodOrdersPost"]
        assert method["Type"] == "AWS::ApiGateway::Method"
        props = method["Properties"]
        assert props["HttpMethod"] == "POST"
        assert props["ResourceId"] == {"Ref": "AagResourceOrders"}
        assert props["AuthorizationType"] == "NONE"
        assert props["Integration"]["Type"] == "AWS_PROXY"
        assert props["Integration"]["IntegrationHttpMethod"] == "POST"
        uri_parts = props["Integration"]["Uri"]["Fn::Join"][1]
        assert functions[ORDERS_HASH].function_arn in uri_parts

    def test_root_path_method_uses_root_resource(self, assembler, functions):
        resources = assembler.assemble(_endpoint_map(_endpoint("/")), functions)["Resources"]
        assert resources["AagMethodGet"]["Properties"]["ResourceId"] == {
            "Fn::GetAtt": [API_REF_NAME, "RootResourceId"]
        }

    def test_missing_function_skips_method(self, assembler, caplog):
        endpoints = _endpoint_map(_endpoint("/users"), _endpoint("/orders", "post", ORDERS_HASH))
        functions = {ORDERS_HASH: _record("orders-fn", ORDERS_HASH)}

        with caplog.at_level(logging.WARNING, logger="svcfacade.assembler"):
            resources = assembler.assemble(endpoints, functions)["Resources"]

        assert "AagMethodUsersGet" not in resources
        assert "AagMethodOrdersPost" in resources
        # The path resource still exists; only the method is omitted.
        assert "AagResourceUsers" in resources
        assert len(caplog.records) == 1

    def test_permissions_for_every_function(self, assembler, functions):
        endpoints = _endpoint_map(_endpoint("/users"))
        resources = assembler.assemble(endpoints, functions)["Resources"]

        perms = {ref for ref, res in resources.items() if res["Type"] == "AWS::Lambda::Permission"}
        assert perms == {"UsersFnAagPerms", "OrdersFnAagPerms"}
        props = resources["OrdersFnAagPerms"]["Properties"]
        assert props["Action"] == "lambda:InvokeFunction"
        assert props["FunctionName"] == functions[ORDERS_HASH].function_arn

    def test_deployment_depends_on_methods(self, assembler, functions):
        endpoints = _endpoint_map(
            _endpoint("/users"),
            _endpoint("/users", "delete"),
            _endpoint("/orders", "post", ORDERS_HASH),
        )
        resources = assembler.assemble(endpoints, functions)["Resources"]

        deployment = resources[DEPLOYMENT_REF]
        assert deployment["Type"] == "AWS::ApiGateway::Deployment"
        assert deployment["Properties"]["StageName"] == "master"
        assert FIXED_NOW.isoformat() in deployment["Properties"]["Description"]
        assert sorted(deployment["DependsOn"]) == sorted(
            ["AagMethodUsersGet", "AagMethodUsersDelete", "AagMethodOrdersPost"]
        )

    def test_deployment_without_methods(self, assembler):
        resources = assembler.assemble({}, {})["Resources"]
        assert resources[DEPLOYMENT_REF]["DependsOn"] == []
        assert set(resources) == {API_REF_NAME, DEPLOYMENT_REF}

    def test_every_ref_name_is_alphanumeric(self, assembler, functions):
        endpoints = _endpoint_map(_endpoint("/users/{id}/orders"), _endpoint("/v1/health-check"))
        resources = assembler.assemble(endpoints, functions)["Resources"]
        assert all(ref.isalnum() for ref in resources)
