# src/trade_store/config/settings.py
import json
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class DeploymentTarget(BaseModel):
    """One (account, region) pair the application stage is deployed to."""

    name: str = Field(description="Stage name, also used as resource name prefix")
    account: Optional[str] = Field(
        default=None,
        description="AWS account ID (None keeps the stack environment-agnostic)"
    )
    region: str = Field(default="us-east-1", description="AWS region")
    require_approval: bool = Field(
        default=False,
        description="Gate this target behind a manual approval step"
    )

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v or not v.replace('-', '').isalnum():
            raise ValueError(f"Invalid target name: {v!r}. Use letters, digits and dashes")
        return v

    @field_validator('account')
    @classmethod
    def validate_account(cls, v):
        if v is not None and (len(v) != 12 or not v.isdigit()):
            raise ValueError(f"Invalid AWS account ID: {v!r}. Must be 12 digits")
        return v


def _default_targets() -> List[DeploymentTarget]:
    return [
        DeploymentTarget(name="Devo", region="us-west-2"),
        DeploymentTarget(name="PreProd", region="us-east-1", require_approval=True),
    ]


class Settings(BaseSettings):
    """
    Single source of truth for the trade store infrastructure settings.

    Configuration precedence:
    1. Environment variables prefixed with TRADE_STORE_ (highest priority)
    2. .env file (if exists)
    3. Default values in this class (lowest priority)

    The settings object is loaded once by the entry point and passed
    explicitly to every stack, stage and operator tool.

    Usage:
        from trade_store.config.settings import get_settings
        settings = get_settings()
        targets = settings.targets
    """

    # Application Settings
    app_name: str = Field(
        default="trade-store",
        description="Application name"
    )

    # Deployment Mode
    deployment_mode: str = Field(
        default="aws-prod",
        description="Deployment mode: local-dev, aws-mock, or aws-prod"
    )

    # AWS Core Settings
    aws_region: str = Field(
        default="us-east-1",
        alias="AWS_DEFAULT_REGION"
    )

    aws_access_key_id: Optional[str] = Field(
        default=None,
        alias="AWS_ACCESS_KEY_ID"
    )

    aws_secret_access_key: Optional[str] = Field(
        default=None,
        alias="AWS_SECRET_ACCESS_KEY"
    )

    aws_endpoint_url: Optional[str] = Field(
        default=None,
        alias="AWS_ENDPOINT_URL"
    )

    # Environments
    toolchain: DeploymentTarget = Field(
        default_factory=lambda: DeploymentTarget(name="Toolchain", region="us-east-1"),
        description="Account/region hosting the pipeline stacks (region defaults to AWS_DEFAULT_REGION)"
    )

    targets: List[DeploymentTarget] = Field(
        default_factory=_default_targets,
        description="Deployment targets of the pipeline-of-stages, in promotion order"
    )

    # Source Configuration
    github_owner: str = Field(
        default="cvlsrivatsa",
        description="Github username for source code repository"
    )

    github_cdk_repository: str = Field(
        default="TradeStoreCdk",
        description="Github cdk code repository"
    )

    github_app_repository: str = Field(
        default="TradeStoreApp",
        description="Github source code repository"
    )

    github_branch: str = Field(
        default="main",
        description="Branch that triggers the pipeline"
    )

    github_token_secret_name: str = Field(
        default="github-token",
        description="Secrets Manager secret holding the GitHub personal access token"
    )

    # Pipeline Configuration
    pipeline_name: str = Field(
        default="TradeStoreReleasePipeline",
        description="Name of the hand-wired release pipeline"
    )

    cdk_pipeline_name: str = Field(
        default="TradeStorePipeline",
        description="Name of the self-mutating pipeline-of-stages"
    )

    enable_release_pipeline: bool = Field(
        default=True,
        description="Synthesize the hand-wired build/approve/deploy pipeline"
    )

    enable_cdk_pipeline: bool = Field(
        default=True,
        description="Synthesize the self-mutating pipeline-of-stages"
    )

    deployed_stack_name: str = Field(
        default="SampleEcsStackDeployedFromCodePipeline",
        description="CloudFormation stack name created by the deploy action"
    )

    pipeline_stack_id: str = Field(
        default="EcsStackDeployedInPipeline",
        description="Construct id of the application stack synthesized for the deploy action"
    )

    image_tag: str = Field(
        default="latest",
        description="Tag pushed by the application build"
    )

    # ECR Configuration
    ecr_repo_name: str = Field(
        default="trade-store-app",
        description="ECR repository name"
    )

    # Service Configuration
    container_name: str = Field(
        default="trade-store-app",
        description="Container name referenced by imagedefinitions.json"
    )

    container_port: int = Field(default=8080)
    listener_port: int = Field(default=80)
    cpu: int = Field(default=512, description="Fargate task CPU units")
    memory_limit_mib: int = Field(default=2048, description="Fargate task memory")
    desired_count: int = Field(default=1)
    min_capacity: int = Field(default=1, description="Autoscaling floor")
    max_capacity: int = Field(default=2, description="Autoscaling ceiling")
    cpu_target_utilization: int = Field(default=50)
    scale_in_cooldown_seconds: int = Field(default=60)
    scale_out_cooldown_seconds: int = Field(default=60)
    health_check_path: str = Field(default="/health")

    # SQS / DynamoDB Configuration
    queue_visibility_timeout_seconds: int = Field(
        default=300,
        description="Interval a received message stays hidden from other consumers"
    )

    table_name: str = Field(
        default="TradeRecordTable",
        description="DynamoDB table base name (prefixed per target)"
    )

    destroy_table_on_delete: bool = Field(
        default=True,
        description="Remove the table with the stack (not recommended for production)"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @field_validator('deployment_mode', mode='before')
    @classmethod
    def normalize_deployment_mode(cls, v):
        """Normalize deployment mode values."""
        if v:
            mode_mapping = {
                "local-mock": "local-dev",
                "cloud": "aws-prod",
            }
            return mode_mapping.get(v, v)
        return v

    @field_validator('deployment_mode')
    @classmethod
    def validate_deployment_mode(cls, v):
        """Validate deployment mode is one of the allowed values."""
        valid_modes = ["local-dev", "aws-mock", "aws-prod"]
        if v not in valid_modes:
            raise ValueError(f"Invalid deployment_mode: {v}. Must be one of {valid_modes}")
        return v

    @field_validator('targets')
    @classmethod
    def validate_unique_targets(cls, v):
        names = [t.name for t in v]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate deployment target names: {duplicates}")
        pairs = [(t.account, t.region) for t in v if t.account]
        if len(pairs) != len(set(pairs)):
            raise ValueError("Two deployment targets share the same account/region pair")
        return v

    @field_validator('max_capacity')
    @classmethod
    def validate_capacity(cls, v, info):
        floor = info.data.get('min_capacity', 1)
        if v < floor:
            raise ValueError(f"max_capacity ({v}) must be >= min_capacity ({floor})")
        return v

    @field_validator('health_check_path')
    @classmethod
    def validate_health_path(cls, v):
        if not v.startswith('/'):
            raise ValueError(f"health_check_path must start with '/': {v}")
        return v

    @model_validator(mode='after')
    def default_toolchain_region(self):
        """Without an explicit toolchain, the pipeline stacks live in AWS_DEFAULT_REGION."""
        if 'toolchain' not in self.model_fields_set:
            self.toolchain = DeploymentTarget(name="Toolchain", region=self.aws_region)
        return self

    @property
    def is_mock_mode(self) -> bool:
        return self.deployment_mode in ["local-dev", "aws-mock"]

    @property
    def endpoint_url(self) -> Optional[str]:
        """Endpoint override used by boto3 clients (moto server in mock modes)."""
        if self.aws_endpoint_url:
            return self.aws_endpoint_url
        if self.is_mock_mode:
            return "http://localhost:5000"
        return None

    def ecr_repository_uri(self, account: str, region: str) -> str:
        """Get the ECR repository URI for an account/region."""
        return f"{account}.dkr.ecr.{region}.amazonaws.com/{self.ecr_repo_name}"

    def get_target(self, name: str) -> DeploymentTarget:
        for target in self.targets:
            if target.name == name:
                return target
        raise KeyError(f"Unknown deployment target: {name}")

    def summary(self) -> Dict[str, Any]:
        """Get a printable view of the settings (no credentials)."""
        data = self.model_dump(exclude={'aws_access_key_id', 'aws_secret_access_key'})
        data['targets'] = [t.model_dump() for t in self.targets]
        return json.loads(json.dumps(data, default=str))

    model_config = SettingsConfigDict(
        env_prefix="TRADE_STORE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()
