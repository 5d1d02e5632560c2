"""Function stack - container-image Lambda behind a public function URL.

The image is pulled from the registry stack's repository, either passed in
directly or looked up by name when this stack is deployed on its own. An
image tagged ``latest`` must already be pushed before deploying.

Deploy:   cdk deploy LambdaStack
Destroy:  cdk destroy LambdaStack
"""
import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_ecr as ecr,
    aws_lambda as lambda_,
)

IMAGE_TAG = "latest"


class FunctionStack(cdk.Stack):

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        repository: ecr.IRepository | None = None,
        repository_name: str | None = None,
        **kwargs,
    ) -> None:
        if (repository is None) == (repository_name is None):
            raise ValueError("FunctionStack needs exactly one of repository or repository_name")
        super().__init__(scope, construct_id, **kwargs)

        if repository is None:
            repository = ecr.Repository.from_repository_name(self, "Repository", repository_name)

        self.function = lambda_.DockerImageFunction(
            self,
            "ContainerFunction",
            code=lambda_.DockerImageCode.from_ecr(
                repository=repository,
                tag_or_digest=IMAGE_TAG,
            ),
        )
        repository.grant_pull(self.function.role)

        # Public endpoint, no auth
        function_url = self.function.add_function_url(
            auth_type=lambda_.FunctionUrlAuthType.NONE,
            cors=lambda_.FunctionUrlCorsOptions(
                allowed_origins=["*"],
                allowed_headers=["*"],
                allowed_methods=[lambda_.HttpMethod.ALL],
            ),
        )

        # Stack outputs
        cdk.CfnOutput(self, "FunctionUrl", value=function_url.url)
        cdk.CfnOutput(self, "FunctionArn", value=self.function.function_arn)
