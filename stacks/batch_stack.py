"""Batch stack - Fargate compute environment, job queue and job definition.

Creates the network, the three roles Batch needs, one managed Fargate
compute environment with a queue in front of it, and a job definition built
entirely from BatchSettings. Jobs write to an existing results bucket.

Batch creates an ECS cluster for the compute environment but does not
expose it, so a custom resource looks the cluster up once the compute
environment is VALID and turns on Container Insights for it.

Deploy:   cdk deploy BatchStack
Destroy:  cdk destroy BatchStack
"""
import os

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_batch as batch,
    aws_ec2 as ec2,
    aws_iam as iam,
    aws_lambda as lambda_,
    aws_logs as logs,
    aws_s3 as s3,
    custom_resources as cr,
)

from config import BatchSettings

LAMBDA_DIR = os.path.join(os.path.dirname(__file__), "lambda_functions")

RESULTS_BUCKET_ENV = "S3_BUCKET"

# Both retry loops of the handler (discovery, then the settings update) must
# finish inside the timeout: 2 x (5+10+20+40+60+60+60)s of backoff plus API calls
INSIGHTS_HANDLER_TIMEOUT = cdk.Duration.minutes(15)
INSIGHTS_MAX_ATTEMPTS = 8


class BatchStack(cdk.Stack):

    def __init__(self, scope: Construct, construct_id: str, *, config: BatchSettings, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # -----------------------------------------------------------
        # Network
        # -----------------------------------------------------------
        vpc = ec2.Vpc(self, "Vpc", max_azs=2)

        security_group = ec2.SecurityGroup(
            self, "BatchSecurityGroup",
            vpc=vpc,
            description="Security group for AWS Batch",
            allow_all_outbound=True,
        )

        results_bucket = s3.Bucket.from_bucket_name(self, "ResultsBucket", config.results_bucket_name)

        # -----------------------------------------------------------
        # IAM roles
        # -----------------------------------------------------------
        service_role = iam.Role(
            self, "BatchServiceRole",
            assumed_by=iam.ServicePrincipal("batch.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("service-role/AWSBatchServiceRole"),
            ],
        )

        # Assumed by the job's container at runtime
        task_role = iam.Role(
            self, "BatchTaskRole",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
        )
        results_bucket.grant_write(task_role)

        # Used by ECS to pull the image and ship logs
        execution_role = iam.Role(
            self, "BatchExecutionRole",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("service-role/AmazonECSTaskExecutionRolePolicy"),
            ],
        )

        # -----------------------------------------------------------
        # Compute environment and queue
        # -----------------------------------------------------------
        self.compute_environment = batch.CfnComputeEnvironment(
            self, "ComputeEnvironment",
            compute_environment_name=config.compute_environment_name,
            type="MANAGED",
            state="ENABLED",
            compute_resources=batch.CfnComputeEnvironment.ComputeResourcesProperty(
                type=config.compute_type,
                maxv_cpus=config.max_vcpus,
                subnets=vpc.select_subnets(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS).subnet_ids,
                security_group_ids=[security_group.security_group_id],
            ),
            service_role=service_role.role_arn,
        )

        self.job_queue = batch.CfnJobQueue(
            self, "JobQueue",
            job_queue_name=config.job_queue_name,
            state="ENABLED",
            priority=config.job_queue_priority,
            compute_environment_order=[
                batch.CfnJobQueue.ComputeEnvironmentOrderProperty(
                    order=1,
                    compute_environment=self.compute_environment.ref,
                ),
            ],
        )

        # -----------------------------------------------------------
        # Job definition
        # -----------------------------------------------------------
        self.job_definition = batch.CfnJobDefinition(
            self, "JobDefinition",
            job_definition_name=config.job_definition_name,
            type="container",
            platform_capabilities=["FARGATE"],
            container_properties=batch.CfnJobDefinition.ContainerPropertiesProperty(
                image=config.job_image,
                command=[config.job_command],
                job_role_arn=task_role.role_arn,
                execution_role_arn=execution_role.role_arn,
                environment=[
                    batch.CfnJobDefinition.EnvironmentProperty(
                        name=RESULTS_BUCKET_ENV,
                        value=results_bucket.bucket_name,
                    ),
                ],
                runtime_platform=batch.CfnJobDefinition.RuntimePlatformProperty(
                    cpu_architecture=config.cpu_architecture,
                    operating_system_family="LINUX",
                ),
                resource_requirements=[
                    batch.CfnJobDefinition.ResourceRequirementProperty(type="VCPU", value=config.job_vcpu),
                    batch.CfnJobDefinition.ResourceRequirementProperty(type="MEMORY", value=config.job_memory),
                ],
                network_configuration=batch.CfnJobDefinition.NetworkConfigurationProperty(
                    assign_public_ip="ENABLED",
                ),
            ),
            retry_strategy=batch.CfnJobDefinition.RetryStrategyProperty(
                attempts=config.job_retry_attempts,
            ),
        )

        # -----------------------------------------------------------
        # Container Insights on the Batch-managed ECS cluster
        # -----------------------------------------------------------
        insights_handler = lambda_.Function(
            self, "ClusterInsightsHandler",
            runtime=lambda_.Runtime.PYTHON_3_12,
            handler="index.on_event",
            code=lambda_.Code.from_asset(os.path.join(LAMBDA_DIR, "cluster_insights")),
            timeout=INSIGHTS_HANDLER_TIMEOUT,
            environment={
                "MAX_ATTEMPTS": str(INSIGHTS_MAX_ATTEMPTS),
                "BASE_DELAY_SECONDS": "5",
                "MAX_DELAY_SECONDS": "60",
            },
            log_group=logs.LogGroup(
                self, "ClusterInsightsLogGroup",
                retention=logs.RetentionDays.ONE_WEEK,
                removal_policy=cdk.RemovalPolicy.DESTROY,
            ),
        )
        # DescribeComputeEnvironments has no resource-level permissions
        insights_handler.add_to_role_policy(iam.PolicyStatement(
            actions=["batch:DescribeComputeEnvironments"],
            resources=["*"],
        ))
        insights_handler.add_to_role_policy(iam.PolicyStatement(
            actions=["ecs:UpdateClusterSettings"],
            resources=[self.format_arn(service="ecs", resource="cluster", resource_name="*")],
        ))

        provider = cr.Provider(self, "ClusterInsightsProvider", on_event_handler=insights_handler)

        cluster_insights = cdk.CustomResource(
            self, "ClusterInsights",
            service_token=provider.service_token,
            resource_type="Custom::ClusterInsights",
            properties={
                "ComputeEnvironment": self.compute_environment.ref,
                "SettingName": "containerInsights",
                "SettingValue": "enabled",
            },
        )

        # -----------------------------------------------------------
        # Outputs
        # -----------------------------------------------------------
        cdk.CfnOutput(self, "ComputeEnvironmentArn", value=self.compute_environment.ref)
        cdk.CfnOutput(self, "JobQueueArn", value=self.job_queue.ref)
        cdk.CfnOutput(self, "JobDefinitionArn", value=self.job_definition.ref)
        cdk.CfnOutput(self, "ClusterArn", value=cluster_insights.get_att_string("ClusterArn"))
