"""Tests for svcfacade.modules."""

from __future__ import annotations

import json

import boto3
import pytest
import yaml
from moto import mock_aws

from svcfacade.config import ConfigError
from svcfacade.context import ServiceContext
from svcfacade.modules import (
    MODULE_TYPES,
    OpenApiSpec,
    PackageFile,
    ServerlessSpec,
    StaticDirectory,
)
from svcfacade.targets import DeployError, S3BucketTarget

BUCKET = "meta-target"

SERVERLESS_YML = """\
service: ${serviceName}
provider:
  name: aws
  stage: ${gitBranch}
  environment:
    SECRET_TABLE: users-${gitBranch}
functions:
  getUser:
    handler: handler.get
"""


@pytest.fixture()
def s3(aws_credentials):
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket=BUCKET)
        yield client


@pytest.fixture()
def context(service_root):
    (service_root / "serverless.yml").write_text(SERVERLESS_YML)
    return ServiceContext(service_root, environ={})


@pytest.fixture()
def target(s3):
    return S3BucketTarget(BUCKET, root_path="/services/users/latest", s3_client=s3)


def _body(client, key) -> str:
    return client.get_object(Bucket=BUCKET, Key=key)["Body"].read().decode()


def _keys(client) -> list[str]:
    response = client.list_objects_v2(Bucket=BUCKET)
    return sorted(item["Key"] for item in response.get("Contents", []))


class TestPackageFile:
    def test_publishes_package_json(self, context, target, s3):
        PackageFile(context, [target]).execute()
        data = json.loads(_body(s3, "services/users/latest/package.json"))
        assert data == {"name": "sls-service-users", "version": "1.2.3"}

    def test_yaml_only_disables_default_json(self, context, target, s3):
        module = PackageFile.from_config(
            {"type": "PackageFile", "yamlFilename": "package.yml"}, context, [target]
        )
        module.execute()
        assert _keys(s3) == ["services/users/latest/package.yml"]

    def test_both_formats(self, context, target, s3):
        module = PackageFile(
            context, [target], json_filename="pkg.json", yaml_filename="pkg.yml"
        )
        results = module.execute()
        assert len(results) == 1
        assert len(results[0]) == 2
        assert _keys(s3) == ["services/users/latest/pkg.json", "services/users/latest/pkg.yml"]


class TestServerlessSpec:
    def test_substitutes_and_truncates_environment(self, context, target, s3):
        ServerlessSpec(context, [target]).execute()
        data = json.loads(_body(s3, "services/users/latest/serverless.json"))
        assert data["service"] == "sls-service-users"
        assert data["provider"]["stage"] == "master"
        assert "environment" not in data["provider"]
        assert data["functions"]["getUser"]["handler"] == "handler.get"

    def test_keeps_environment_when_not_truncating(self, context, target, s3):
        module = ServerlessSpec.from_config(
            {"type": "ServerlessSpec", "truncateEnvironment": False}, context, [target]
        )
        module.execute()
        data = json.loads(_body(s3, "services/users/latest/serverless.json"))
        assert data["provider"]["environment"] == {"SECRET_TABLE": "users-master"}

    def test_yaml_output(self, context, target, s3):
        module = ServerlessSpec(context, [target], yaml_filename="serverless.yml")
        module.execute()
        data = yaml.safe_load(_body(s3, "services/users/latest/serverless.yml"))
        assert data["service"] == "sls-service-users"

    def test_missing_source_raises(self, context, target):
        module = ServerlessSpec(context, [target], source_path_rel="nope.yml")
        with pytest.raises(ConfigError):
            module.execute()

    def test_includes_generated_functions(self, endpoint_service, context, target, s3):
        ServerlessSpec(context, [target]).execute()
        data = json.loads(_body(s3, "services/users/latest/serverless.json"))
        assert set(data["functions"]) == {"getUser", "GetUser", "CreateUser"}
        event = data["functions"]["GetUser"]["events"][0]["http"]
        assert event == {"path": "users/{id}", "method": "get", "integration": "lambda-proxy"}

    def test_generation_can_be_disabled(self, endpoint_service, context, target, s3):
        module = ServerlessSpec.from_config(
            {"type": "ServerlessSpec", "generateFunctions": False}, context, [target]
        )
        module.execute()
        data = json.loads(_body(s3, "services/users/latest/serverless.json"))
        assert set(data["functions"]) == {"getUser"}


class TestOpenApiSpec:
    def test_publishes_template_without_references(self, context, target, s3):
        (context.root_path / "openapi.yml").write_text("openapi: 3.0.0\ninfo:\n  title: Users\n")
        OpenApiSpec(context, [target]).execute()
        data = json.loads(_body(s3, "services/users/latest/openapi.json"))
        assert data["info"]["title"] == "Users"

    def test_resolves_service_references(self, endpoint_service, context, target, s3):
        (context.root_path / "openapi.yml").write_text(
            "swagger: '2.0'\n"
            "info:\n"
            "  title: Users\n"
            "  version:\n"
            "    $ref: 'service:Package#/version'\n"
            "paths:\n"
            "  $ref: 'service:EndpointPaths'\n"
        )
        OpenApiSpec(context, [target]).execute()
        data = json.loads(_body(s3, "services/users/latest/openapi.json"))
        assert data["info"]["version"] == "1.2.3"
        assert data["paths"]["/users"]["post"]["summary"] == "Create a user"
        ok = data["paths"]["/users/{id}"]["get"]["responses"]["200"]
        assert ok["schema"]["properties"]["id"] == {"type": "string"}


class TestStaticDirectory:
    def test_uploads_tree(self, context, target, s3):
        docs = context.root_path / "docs"
        (docs / "img").mkdir(parents=True)
        (docs / "index.html").write_text("<html/>")
        (docs / "img" / "logo.svg").write_text("<svg/>")

        module = StaticDirectory.from_config(
            {"type": "StaticDirectory", "sourcePathRel": "docs", "destPathRel": "/static/"},
            context,
            [target],
        )
        module.execute()

        assert _keys(s3) == [
            "services/users/latest/static/img/logo.svg",
            "services/users/latest/static/index.html",
        ]

    def test_collect_files_without_dest(self, context, target):
        docs = context.root_path / "docs"
        docs.mkdir()
        (docs / "a.txt").write_text("a")
        files = StaticDirectory(context, [target], source_path_rel="docs").collect_files()
        assert [f.remote_rel_path for f in files] == ["a.txt"]

    def test_missing_directory_raises(self, context, target):
        module = StaticDirectory(context, [target], source_path_rel="missing")
        with pytest.raises(DeployError, match="does not exist"):
            module.execute()


class TestModuleTypes:
    def test_registry(self):
        assert set(MODULE_TYPES) == {"PackageFile", "ServerlessSpec", "OpenApiSpec", "StaticDirectory"}

    def test_every_target_receives_output(self, context, s3):
        targets = [
            S3BucketTarget(BUCKET, root_path="/one", s3_client=s3),
            S3BucketTarget(BUCKET, root_path="/two", s3_client=s3),
        ]
        PackageFile(context, targets).execute()
        assert _keys(s3) == ["one/package.json", "two/package.json"]
