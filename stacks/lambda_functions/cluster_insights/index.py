"""Cluster Insights custom resource handler.

AWS Batch creates an ECS cluster for every compute environment but does not
return it to CloudFormation. On Create and Update this handler:
  1. Describes the compute environment until it is VALID and reports its
     ecsClusterArn (the field is missing while Batch is still provisioning).
  2. Applies a cluster setting (containerInsights=enabled) to that cluster.

Both steps retry with exponential backoff. Re-applying the setting is a
no-op, so repeated deployments are safe. Delete does nothing: the cluster is
removed together with the compute environment.

Environment variables (set by CDK):
  MAX_ATTEMPTS        - attempts per step before giving up
  BASE_DELAY_SECONDS  - first backoff delay, doubled after every attempt
  MAX_DELAY_SECONDS   - upper bound for a single delay
"""
import os
import time
import logging

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger()
logger.setLevel(logging.INFO)

batch_client = boto3.client("batch")
ecs_client = boto3.client("ecs")

MAX_ATTEMPTS = int(os.environ.get("MAX_ATTEMPTS", "8"))
BASE_DELAY_SECONDS = float(os.environ.get("BASE_DELAY_SECONDS", "5"))
MAX_DELAY_SECONDS = float(os.environ.get("MAX_DELAY_SECONDS", "60"))

PENDING_STATUSES = ("CREATING", "UPDATING")
FAILED_STATUSES = ("INVALID", "DELETING", "DELETED")
RETRYABLE_ERROR_CODES = (
    "ClusterNotFoundException",
    "ServerException",
    "ThrottlingException",
    "TooManyRequestsException",
)


class ClusterNotReadyError(RuntimeError):
    """The compute environment never reported an ECS cluster in time."""


class ComputeEnvironmentInvalidError(RuntimeError):
    """The compute environment ended up in a state it will not recover from."""


def backoff_delay(attempt):
    """Delay before retrying after the given (1-based) attempt."""
    return min(BASE_DELAY_SECONDS * (2 ** (attempt - 1)), MAX_DELAY_SECONDS)


def find_cluster_arn(compute_environment):
    """Return the ECS cluster ARN of a compute environment, or None if not ready yet."""
    try:
        response = batch_client.describe_compute_environments(computeEnvironments=[compute_environment])
    except ClientError as e:
        code = e.response["Error"]["Code"]
        if code not in RETRYABLE_ERROR_CODES:
            raise
        logger.warning("DescribeComputeEnvironments failed with %s.", code)
        return None
    environments = response.get("computeEnvironments", [])
    if not environments:
        logger.info("Compute environment %s not visible yet.", compute_environment)
        return None

    environment = environments[0]
    status = environment.get("status")
    if status in FAILED_STATUSES:
        raise ComputeEnvironmentInvalidError(
            f"Compute environment {compute_environment} is {status}: "
            f"{environment.get('statusReason', 'no reason given')}"
        )
    if status in PENDING_STATUSES:
        logger.info("Compute environment %s is %s.", compute_environment, status)
        return None

    cluster_arn = environment.get("ecsClusterArn")
    if not cluster_arn:
        logger.info("Compute environment %s has no ecsClusterArn yet.", compute_environment)
    return cluster_arn


def wait_for_cluster_arn(compute_environment):
    """Poll the compute environment until its ECS cluster ARN is available."""
    for attempt in range(1, MAX_ATTEMPTS + 1):
        cluster_arn = find_cluster_arn(compute_environment)
        if cluster_arn:
            logger.info("Compute environment %s uses cluster %s.", compute_environment, cluster_arn)
            return cluster_arn
        if attempt < MAX_ATTEMPTS:
            delay = backoff_delay(attempt)
            logger.info("Cluster not ready (attempt %d/%d), retrying in %.0fs.", attempt, MAX_ATTEMPTS, delay)
            time.sleep(delay)

    raise ClusterNotReadyError(
        f"Compute environment {compute_environment} did not report an ECS cluster "
        f"after {MAX_ATTEMPTS} attempts"
    )


def enable_cluster_setting(cluster_arn, name, value):
    """Apply a cluster setting, retrying transient ECS errors."""
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            ecs_client.update_cluster_settings(
                cluster=cluster_arn,
                settings=[{"name": name, "value": value}],
            )
            logger.info("Set %s=%s on %s.", name, value, cluster_arn)
            return
        except ClientError as e:
            code = e.response["Error"]["Code"]
            if code not in RETRYABLE_ERROR_CODES or attempt == MAX_ATTEMPTS:
                raise
            delay = backoff_delay(attempt)
            logger.warning("UpdateClusterSettings failed with %s (attempt %d/%d), retrying in %.0fs.",
                           code, attempt, MAX_ATTEMPTS, delay)
            time.sleep(delay)


def reconcile(compute_environment, name, value):
    cluster_arn = wait_for_cluster_arn(compute_environment)
    enable_cluster_setting(cluster_arn, name, value)
    return cluster_arn


def on_event(event, _context):
    """Custom resource entry point used by the CDK provider framework."""
    request_type = event["RequestType"]
    props = event["ResourceProperties"]
    logger.info("%s request for compute environment %s.", request_type, props.get("ComputeEnvironment"))

    if request_type == "Delete":
        return {"PhysicalResourceId": event["PhysicalResourceId"]}

    cluster_arn = reconcile(
        props["ComputeEnvironment"],
        props.get("SettingName", "containerInsights"),
        props.get("SettingValue", "enabled"),
    )
    return {
        "PhysicalResourceId": cluster_arn,
        "Data": {"ClusterArn": cluster_arn},
    }
