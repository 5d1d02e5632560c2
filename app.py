"""CDK app entry point for the container workloads infrastructure.

Three stacks:
  - EcrStack:     ECR repository plus an IAM user that can push to it
  - LambdaStack:  Container-image Lambda pulling from the repository, public URL
  - BatchStack:   Fargate compute environment, job queue and job definition

Configuration comes from environment variables or a .env file (see
.env.example); synthesis stops before any stack is built if one is missing.

Deploy all:    cdk deploy --all
Deploy one:    cdk deploy EcrStack
Destroy all:   cdk destroy --all
"""
import logging

import aws_cdk as cdk

from config import AppConfig, load_config
from stacks.registry_stack import RegistryStack
from stacks.function_stack import FunctionStack
from stacks.batch_stack import BatchStack

logger = logging.getLogger(__name__)


def build_app(config: AppConfig, app: cdk.App | None = None) -> cdk.App:
    app = app or cdk.App()
    env = cdk.Environment(account=config.deployment.account, region=config.deployment.region)

    registry = RegistryStack(app, "EcrStack",
                             config=config.registry,
                             env=env,
                             description="ECR repository and push user")

    function = FunctionStack(app, "LambdaStack",
                             repository=registry.repository,
                             env=env,
                             description="Container-image Lambda with a public function URL")

    BatchStack(app, "BatchStack",
               config=config.batch,
               env=env,
               description="Fargate compute environment, job queue and job definition")

    function.add_dependency(registry)

    tags: dict = app.node.try_get_context("tags") or {}
    for tag_key, tag_value in tags.items():
        cdk.Tags.of(app).add(tag_key, tag_value)

    logger.warning("EcrStack outputs the push user's secret access key in plaintext.")
    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    build_app(load_config()).synth()
