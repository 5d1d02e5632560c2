"""Registry stack - ECR repository and the IAM user that pushes to it.

Deployed first: the function stack pulls its image from this repository.

Deploy:   cdk deploy EcrStack
Destroy:  cdk destroy EcrStack
"""
import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_ecr as ecr,
    aws_iam as iam,
)

from config import RegistrySettings

MAX_IMAGE_COUNT = 5

PUSH_ACTIONS = [
    "ecr:BatchCheckLayerAvailability",
    "ecr:InitiateLayerUpload",
    "ecr:UploadLayerPart",
    "ecr:CompleteLayerUpload",
    "ecr:PutImage",
]


class RegistryStack(cdk.Stack):

    def __init__(self, scope: Construct, construct_id: str, *, config: RegistrySettings, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # Images and the repository itself go away with the stack
        self.repository = ecr.Repository(
            self,
            "Repository",
            repository_name=config.repository_name,
            removal_policy=cdk.RemovalPolicy.DESTROY,
            empty_on_delete=True,
            lifecycle_rules=[
                ecr.LifecycleRule(
                    description=f"Keep only the last {MAX_IMAGE_COUNT} images",
                    max_image_count=MAX_IMAGE_COUNT,
                ),
            ],
        )

        self.push_user = iam.User(self, "EcrPushUser", user_name=config.iam_username)

        self.push_user.add_to_policy(iam.PolicyStatement(
            actions=PUSH_ACTIONS,
            resources=[self.repository.repository_arn],
        ))
        # GetAuthorizationToken has no resource-level permissions
        self.push_user.add_to_policy(iam.PolicyStatement(
            actions=["ecr:GetAuthorizationToken"],
            resources=["*"],
        ))

        access_key = iam.CfnAccessKey(self, "AccessKey", user_name=self.push_user.user_name)

        # Stack outputs
        cdk.CfnOutput(self, "EcrRepositoryName",
                      value=self.repository.repository_name,
                      description="ECR repository name")
        cdk.CfnOutput(self, "EcrRepositoryUri",
                      value=self.repository.repository_uri,
                      description="ECR repository URI for docker push")
        cdk.CfnOutput(self, "AccessKeyIdOutput",
                      value=access_key.ref,
                      description="Access key id of the push user")
        cdk.CfnOutput(self, "SecretAccessKeyOutput",
                      value=access_key.attr_secret_access_key,
                      description="Secret access key of the push user (plaintext)")
