"""CloudFormation fragments for the facade API and reference-name formatting.

Every fragment is a plain dict containing ``${name}`` placeholders; use
:func:`render` to get a substituted copy.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from svcfacade.variables import substitute

_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")
_WORD_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|[0-9]+")


def _arn_join(*parts: Any) -> dict[str, Any]:
    return {"Fn::Join": ["", list(parts)]}


OUTER = {
    "AWSTemplateFormatVersion": "2010-09-09",
    "Description": "API Facade Layer Generated by the svcfacade Service Aggregator.",
    "Resources": {},
    "Outputs": {
        "ApiRootUrl": {
            "Description": "The Root API URL",
            "Value": _arn_join(
                "https://",
                {"Ref": "${apiRefName}"},
                ".execute-api.${awsRegion}.",
                {"Ref": "AWS::URLSuffix"},
                "/${gitBranch}",
            ),
        },
    },
}

REST_API = {
    "Type": "AWS::ApiGateway::RestApi",
    "Properties": {
        "Name": "${apiName}",
        "EndpointConfiguration": {"Types": ["EDGE"]},
    },
}

ROOT_RESOURCE = {
    "Type": "AWS::ApiGateway::Resource",
    "Properties": {
        "ParentId": {"Fn::GetAtt": ["${apiRefName}", "RootResourceId"]},
        "PathPart": "${pathPart}",
        "RestApiId": {"Ref": "${apiRefName}"},
    },
}

CHILD_RESOURCE = {
    "Type": "AWS::ApiGateway::Resource",
    "Properties": {
        "ParentId": {"Ref": "${parentRefName}"},
        "PathPart": "${pathPart}",
        "RestApiId": {"Ref": "${apiRefName}"},
    },
}

METHOD = {
    "Type": "AWS::ApiGateway::Method",
    "Properties": {
        "HttpMethod": "${httpMethod}",
        "RequestParameters": {},
        "ResourceId": {"Ref": "${resourceRefName}"},
        "RestApiId": {"Ref": "${apiRefName}"},
        "ApiKeyRequired": False,
        "AuthorizationType": "NONE",
        "Integration": {
            "IntegrationHttpMethod": "POST",
            "Type": "AWS_PROXY",
            "Uri": _arn_join(
                "arn:",
                {"Ref": "AWS::Partition"},
                ":apigateway:",
                {"Ref": "AWS::Region"},
                ":lambda:path/2015-03-31/functions/",
                "${lambdaFunctionArn}",
                "/invocations",
            ),
        },
        "MethodResponses": [],
    },
}

PERMISSION = {
    "Type": "AWS::Lambda::Permission",
    "Properties": {
        "FunctionName": "${lambdaFunctionArn}",
        "Action": "lambda:InvokeFunction",
        "Principal": _arn_join("apigateway.", {"Ref": "AWS::URLSuffix"}),
        "SourceArn": _arn_join(
            "arn:",
            {"Ref": "AWS::Partition"},
            ":execute-api:",
            {"Ref": "AWS::Region"},
            ":",
            {"Ref": "AWS::AccountId"},
            ":",
            {"Ref": "${apiRefName}"},
            "/*/*",
        ),
    },
}

DEPLOYMENT = {
    "Type": "AWS::ApiGateway::Deployment",
    "Properties": {
        "RestApiId": {"Ref": "${apiRefName}"},
        "StageName": "${gitBranch}",
        "Description": "${description}",
    },
    "DependsOn": [],
}


def render(fragment: Mapping[str, Any], variables: Mapping[str, Any]) -> dict[str, Any]:
    """Return a substituted copy of *fragment*; the fragment itself is untouched."""
    return substitute(dict(fragment), variables)


def _start_case(text: str) -> str:
    words = _WORD_RE.findall(text)
    return " ".join(word[0].upper() + word[1:] for word in words)


def format_ref_name(prefix: str | None, text: str, suffix: str | None = None) -> str:
    """Turn *text* into a CloudFormation logical id.

    ``}`` becomes the word ``Var``, other punctuation separates words, each
    word is capitalized, and the result is wrapped in *prefix*/*suffix*::

        >>> format_ref_name(None, "my-function_01", "AagPerms")
        'MyFunction01AagPerms'
        >>> format_ref_name("AagResource", "users/{id}")
        'AagResourceUsersIdVar'
    """
    text = text.replace("}", " Var ")
    text = _NON_ALNUM_RE.sub(" ", text)
    text = re.sub(r"\s+", "", _start_case(text))
    return f"{prefix or ''}{text}{suffix or ''}"
