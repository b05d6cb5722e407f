"""Aggregate serverless microservices into a single API Gateway facade."""

__version__ = "0.1.0"
