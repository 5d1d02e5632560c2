"""Deployment configuration.

Every value the stacks need comes from environment variables, optionally
supplied through a flat ``.env`` file in the project root. Each concern has
its own settings class so a stack only receives what it uses:

  - DeploymentSettings  CDK_DEFAULT_*  target account and region
  - RegistrySettings    ECR_*          repository and push user names
  - BatchSettings       BATCH_*        compute environment, queue, job definition

load_config() validates all of them up front and fails with a single
ConfigurationError naming every missing or malformed variable.
"""
import logging
import os
from dataclasses import dataclass
from typing import Literal

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Next to this module, so running app.py from another directory still finds it
DEFAULT_ENV_FILE = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")


class ConfigurationError(ValueError):
    """Raised when required environment configuration is missing or invalid."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("Invalid deployment configuration:\n  " + "\n  ".join(problems))


class DeploymentSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CDK_DEFAULT_",
        env_file=DEFAULT_ENV_FILE,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    account: str = Field(..., pattern=r"^\d{12}$", description="Target AWS account id")
    region: str = Field(..., min_length=1, description="Target AWS region")


class RegistrySettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ECR_",
        env_file=DEFAULT_ENV_FILE,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    repository_name: str = Field(..., min_length=1, description="ECR repository name")
    iam_username: str = Field(..., min_length=1, description="IAM user allowed to push images")


class BatchSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BATCH_",
        env_file=DEFAULT_ENV_FILE,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Pre-existing bucket the jobs write their results to
    results_bucket_name: str = Field(..., min_length=1)

    compute_environment_name: str = Field(..., min_length=1)
    job_queue_name: str = Field(..., min_length=1)
    job_definition_name: str = Field(..., min_length=1)

    job_image: str = Field(..., min_length=1, description="Container image reference")
    job_command: str = Field(..., min_length=1, description="Passed as a single-element command array")
    # Kept as strings: the job definition takes them verbatim
    job_vcpu: str = Field(..., pattern=r"^\d+(\.\d+)?$", description="vCPUs per job, e.g. 0.5 or 2")
    job_memory: str = Field(..., pattern=r"^\d+$", description="Memory per job in MiB")

    max_vcpus: int = Field(default=64, gt=0, description="Compute environment vCPU ceiling")
    job_retry_attempts: int = Field(default=1, ge=1, le=10)
    job_queue_priority: int = Field(default=1, ge=0)
    compute_type: Literal["FARGATE", "FARGATE_SPOT"] = "FARGATE"
    cpu_architecture: Literal["ARM64", "X86_64"] = "ARM64"


@dataclass(frozen=True)
class AppConfig:
    deployment: DeploymentSettings
    registry: RegistrySettings
    batch: BatchSettings


SECTIONS = {
    "deployment": DeploymentSettings,
    "registry": RegistrySettings,
    "batch": BatchSettings,
}


def _describe_errors(settings_cls: type[BaseSettings], error: ValidationError) -> list[str]:
    """Turn pydantic errors into one line per environment variable."""
    prefix = settings_cls.model_config.get("env_prefix", "")
    problems = []
    for detail in error.errors():
        field = str(detail["loc"][0]) if detail["loc"] else ""
        problems.append(f"{prefix}{field.upper()}: {detail['msg']}")
    return problems


def load_config(env_file: str | None = DEFAULT_ENV_FILE) -> AppConfig:
    """Load and validate every settings section.

    Pass ``env_file=None`` to read the process environment only.
    """
    problems: list[str] = []
    sections = {}
    for key, settings_cls in SECTIONS.items():
        try:
            sections[key] = settings_cls(_env_file=env_file)
        except ValidationError as e:
            problems.extend(_describe_errors(settings_cls, e))

    if problems:
        raise ConfigurationError(problems)

    logger.info(
        "Loaded configuration for account %s in %s",
        sections["deployment"].account, sections["deployment"].region,
    )
    return AppConfig(**sections)
