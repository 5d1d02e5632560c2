"""
Pytest Configuration and Shared Fixtures.

- clean_env: strips deployment variables so the host environment never leaks in
- full_env: a complete, valid set of deployment variables
- registry_settings / batch_settings: settings objects built without any .env file
- synth_app: fresh cdk.App per test
"""

import os

import aws_cdk as cdk
import pytest

from config import BatchSettings, RegistrySettings

# boto3 clients in the Lambda handlers are created at import time
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

ACCOUNT = "123456789012"
REGION = "eu-south-1"

FULL_ENV = {
    "CDK_DEFAULT_ACCOUNT": ACCOUNT,
    "CDK_DEFAULT_REGION": REGION,
    "ECR_REPOSITORY_NAME": "demo-repo",
    "ECR_IAM_USERNAME": "ecr-push-user",
    "BATCH_RESULTS_BUCKET_NAME": "results-bucket",
    "BATCH_COMPUTE_ENVIRONMENT_NAME": "FargateComputeEnv",
    "BATCH_JOB_QUEUE_NAME": "FargateQueue",
    "BATCH_JOB_DEFINITION_NAME": "CpuLoadJobDefinition",
    "BATCH_JOB_IMAGE": "agrumi/cpuloadgenerator:latest",
    "BATCH_JOB_COMMAND": "-c 0 -l 1 -d 60",
    "BATCH_JOB_VCPU": "2",
    "BATCH_JOB_MEMORY": "4096",
}

OPTIONAL_ENV = [
    "BATCH_MAX_VCPUS",
    "BATCH_JOB_RETRY_ATTEMPTS",
    "BATCH_JOB_QUEUE_PRIORITY",
    "BATCH_COMPUTE_TYPE",
    "BATCH_CPU_ARCHITECTURE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove every deployment variable from the process environment."""
    for name in list(FULL_ENV) + OPTIONAL_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def full_env(monkeypatch) -> dict:
    """Set a complete, valid deployment environment."""
    for name, value in FULL_ENV.items():
        monkeypatch.setenv(name, value)
    return dict(FULL_ENV)


@pytest.fixture
def registry_settings() -> RegistrySettings:
    return RegistrySettings(_env_file=None, repository_name="demo-repo", iam_username="ecr-push-user")


@pytest.fixture
def batch_settings() -> BatchSettings:
    return BatchSettings(
        _env_file=None,
        results_bucket_name="results-bucket",
        compute_environment_name="FargateComputeEnv",
        job_queue_name="FargateQueue",
        job_definition_name="CpuLoadJobDefinition",
        job_image="agrumi/cpuloadgenerator:latest",
        job_command="-c 0 -l 1 -d 60",
        job_vcpu="2",
        job_memory="4096",
    )


@pytest.fixture
def synth_app() -> cdk.App:
    return cdk.App()


@pytest.fixture
def env() -> cdk.Environment:
    return cdk.Environment(account=ACCOUNT, region=REGION)
