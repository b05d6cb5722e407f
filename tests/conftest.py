"""Shared pytest fixtures for svcfacade tests."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import pytest
from botocore.exceptions import ClientError

from svcfacade.models import ServiceBundle

USERS_HASH = "a" * 32
ORDERS_HASH = "0123456789abcdef0123456789abcdef"


def make_function(
    version_hash: str,
    events: list[dict[str, Any]],
    name: str | None = None,
    description: str | None = None,
) -> dict[str, Any]:
    """A ``functions`` entry of a serverless spec."""
    func: dict[str, Any] = {
        "environment": {"COREFW_VERSION_HASH": version_hash},
        "events": events,
    }
    if name:
        func["name"] = name
    if description:
        func["description"] = description
    return func


def http_event(path: str, method: str, integration: str = "lambda-proxy") -> dict[str, Any]:
    return {"http": {"path": path, "method": method, "integration": integration}}


def lambda_function(
    name: str,
    version_hash: str | None,
    branch: str | None = "master",
) -> dict[str, Any]:
    """A ``ListFunctions`` entry as returned by the Lambda API."""
    variables = {}
    if version_hash is not None:
        variables["COREFW_VERSION_HASH"] = version_hash
    if branch is not None:
        variables["COREFW_SERVICE_BRANCH"] = branch
    return {
        "FunctionName": name,
        "FunctionArn": f"arn:aws:lambda:us-east-1:123456789012:function:{name}",
        "Environment": {"Variables": variables},
    }


def client_error(code: str, message: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


class FakeLambdaClient:
    """Serves ``list_functions`` from pre-built pages, following ``Marker``."""

    def __init__(self, pages: list[list[dict[str, Any]]], error: Exception | None = None):
        self.pages = pages
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def list_functions(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        index = int(kwargs.get("Marker", "0"))
        response: dict[str, Any] = {"Functions": self.pages[index] if self.pages else []}
        if index + 1 < len(self.pages):
            response["NextMarker"] = str(index + 1)
        return response


class FakeCloudFormationClient:
    """Tracks one stack whose status walks through *statuses* on each describe."""

    def __init__(
        self,
        exists: bool = False,
        statuses: list[str] | None = None,
        update_error: Exception | None = None,
    ):
        self.exists = exists
        self.statuses = list(statuses or [])
        self.update_error = update_error
        self.status = "CREATE_COMPLETE"
        self.stack_id = "arn:aws:cloudformation:us-east-1:123456789012:stack/facade/1"
        self.created: list[dict[str, Any]] = []
        self.updated: list[dict[str, Any]] = []
        self.describe_calls = 0

    def describe_stacks(self, StackName: str) -> dict[str, Any]:
        self.describe_calls += 1
        if not self.exists:
            raise client_error(
                "ValidationError", f"Stack with id {StackName} does not exist", "DescribeStacks"
            )
        if self.statuses:
            self.status = self.statuses.pop(0)
        return {"Stacks": [{"StackId": self.stack_id, "StackStatus": self.status}]}

    def create_stack(self, **kwargs: Any) -> dict[str, Any]:
        self.created.append(kwargs)
        self.exists = True
        return {"StackId": self.stack_id}

    def update_stack(self, **kwargs: Any) -> dict[str, Any]:
        if self.update_error is not None:
            raise self.update_error
        self.updated.append(kwargs)
        return {"StackId": self.stack_id}


@pytest.fixture()
def aws_credentials():
    """Ensure moto doesn't try to use real AWS credentials."""
    os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
    os.environ.setdefault("AWS_SECURITY_TOKEN", "testing")
    os.environ.setdefault("AWS_SESSION_TOKEN", "testing")


@pytest.fixture()
def users_bundle() -> ServiceBundle:
    return ServiceBundle(
        name="sls-service-users",
        serverless={
            "service": "sls-service-users",
            "functions": {
                "listUsers": make_function(
                    USERS_HASH,
                    [http_event("/users", "get"), {"schedule": "rate(5 minutes)"}],
                    name="sls-service-users-master-listUsers",
                    description="List every user",
                ),
                "getUser": make_function(
                    USERS_HASH,
                    [http_event("/users/{id}", "get"), http_event("/users/{id}", "patch")],
                    name="sls-service-users-master-getUser",
                ),
            },
        },
    )


@pytest.fixture()
def orders_bundle() -> ServiceBundle:
    return ServiceBundle(
        name="sls-service-orders",
        serverless={
            "functions": {
                "createOrder": make_function(
                    ORDERS_HASH,
                    [
                        http_event("/orders", "post"),
                        http_event("/orders", "put"),
                        http_event("/orders", "GET"),
                    ],
                    name="sls-service-orders-master-createOrder",
                ),
            },
        },
    )


@pytest.fixture()
def service_root(tmp_path: Path) -> Path:
    """A service project with package.json, a git HEAD and config files."""
    (tmp_path / "package.json").write_text(
        json.dumps({"name": "sls-service-users", "version": "1.2.3"})
    )
    git_dir = tmp_path / ".git"
    git_dir.mkdir()
    (git_dir / "HEAD").write_text("ref: refs/heads/master\n")
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "aggregation-config.yml").write_text(
        "MetaSourceBucket:\n"
        "  bucket: meta-${gitBranch}\n"
        "  rootPath: /services/\n"
        "  awsRegion: us-east-1\n"
        "FacadeApi:\n"
        "  name: facade-${gitBranch}\n"
        "  cfStackName: facade-api-${gitBranch}\n"
        "  pollInterval: 1\n"
        "  maxPollAttempts: 3\n"
    )
    return tmp_path


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


@pytest.fixture()
def endpoint_service(service_root: Path) -> Path:
    """*service_root* plus two endpoint directories and shared schemas."""
    endpoints = service_root / "lib" / "endpoints"

    get_user = endpoints / "get" / "GetUser"
    _write(
        get_user / "config" / "serverless-function.yml",
        "handler: lib/endpoints/get/GetUser/handler.handle\n"
        "description: Get one ${serviceNameShort} user\n",
    )
    _write(
        get_user / "schema" / "Path.yml",
        "paths:\n"
        "  /users/{id}:\n"
        "    get:\n"
        "      summary: Get a user\n"
        "      responses:\n"
        "        '200':\n"
        "          $ref: 'endpoint:GetUser/SuccessResponse'\n",
    )
    _write(
        get_user / "schema" / "Parameters.yml",
        "parameters:\n  - name: id\n    in: path\n",
    )
    _write(
        get_user / "schema" / "SuccessResponse.json",
        json.dumps({"description": "OK", "schema": {"$ref": "common:user/User"}}),
    )

    create_user = endpoints / "post" / "CreateUser"
    _write(
        create_user / "config" / "serverless-function.yml",
        "handler: create.handle\n"
        "events:\n"
        "  - http:\n"
        "      path: /users/\n"
        "      method: post\n"
        "      integration: lambda\n",
    )
    _write(
        create_user / "schema" / "Path.yml",
        "/users:\n  post:\n    summary: Create a user\n",
    )

    definitions = service_root / "schema" / "definitions"
    _write(
        definitions / "user" / "User.json",
        json.dumps({"type": "object", "properties": {"id": {"type": "string"}}}),
    )
    _write(
        definitions / "error" / "ErrorModel.json",
        json.dumps({"type": "object", "properties": {"message": {"type": "string"}}}),
    )
    return service_root
