"""The metadata deployment pipeline run during a service's CI/CD build."""

from __future__ import annotations

import logging
from typing import Any

from svcfacade.config import MetaDeployConfig
from svcfacade.context import ServiceContext
from svcfacade.modules import MODULE_TYPES, DeployModule
from svcfacade.targets import TARGET_TYPES, DeployError, S3BucketTarget

logger = logging.getLogger(__name__)


class MetaDeploymentManager:
    """Builds the configured targets and modules and runs them in order.

    Args:
        context: The service being deployed.
        config: The ``MetaDeploy`` configuration section.
        profile: AWS named profile used by targets that build their own clients.
        s3_client: Optional shared boto3 S3 client for every target.
    """

    def __init__(
        self,
        context: ServiceContext,
        config: MetaDeployConfig,
        profile: str | None = None,
        s3_client: Any = None,
    ) -> None:
        self.context = context
        self.config = config
        self._target_kwargs: dict[str, Any] = {"profile": profile}
        if s3_client is not None:
            self._target_kwargs["s3_client"] = s3_client
        self.targets = self._build_targets()
        self.modules = self._build_modules()

    def _build_targets(self) -> list[S3BucketTarget]:
        logger.info("Initializing Deploy Targets ...")
        targets = []
        for cfg in self.config.targets:
            type_name = cfg.get("type")
            target_cls = TARGET_TYPES.get(type_name)
            if target_cls is None:
                raise DeployError(f"Unknown deploy target type {type_name!r}")
            targets.append(target_cls.from_config(cfg, **self._target_kwargs))
        return targets

    def _build_modules(self) -> list[DeployModule]:
        logger.info("Initializing Modules ...")
        modules = []
        for cfg in self.config.modules:
            type_name = cfg.get("type")
            if cfg.get("include") is not True:
                if type_name is not None:
                    logger.warning(
                        "An instance of a '%s' deployment module is disabled and will not be executed!",
                        type_name,
                    )
                continue
            module_cls = MODULE_TYPES.get(type_name)
            if module_cls is None:
                raise DeployError(f"Unknown deploy module type {type_name!r}")
            modules.append(module_cls.from_config(cfg, self.context, self.targets))
        return modules

    def prepare_targets(self) -> None:
        for target in self.targets:
            target.prepare()

    def execute(self) -> list[Any]:
        """Prepare every target, then run each module sequentially."""
        logger.info("The Metadata Deployment Manager is starting up ...")
        self.prepare_targets()
        results = []
        for module in self.modules:
            logger.info("Deferring to Module: %s", module.name)
            results.append(module.execute())
        logger.info("Metadata deployment complete.")
        return results
