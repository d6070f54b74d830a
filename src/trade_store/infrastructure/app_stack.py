"""
Application stack for one deployed environment.

Declares the queue, the trade record table, the VPC and ECS cluster, the
load balanced Fargate service with CPU based autoscaling, and the grants that
bind the service to the table, the queue and the image registry.
"""
import logging
from typing import Optional

from aws_cdk import (
    Aws,
    Stack,
    Duration,
    RemovalPolicy,
    CfnOutput,
    aws_ec2 as ec2,
    aws_ecs as ecs,
    aws_ecs_patterns as ecs_patterns,
    aws_sqs as sqs,
    aws_dynamodb as dynamodb,
    aws_iam as iam,
)
from constructs import Construct

from trade_store.config.settings import Settings

logger = logging.getLogger(__name__)


class TradeStoreAppStack(Stack):
    """Queue, table and container service of the trade store."""

    def __init__(self, scope: Construct, construct_id: str, *,
                 settings: Settings,
                 resource_prefix: str,
                 image: Optional[ecs.ContainerImage] = None,
                 **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.resource_prefix = resource_prefix
        self.image_repository_arn = None

        # SQS
        self.queue = sqs.Queue(
            self, "TradeStoreQueue",
            visibility_timeout=Duration.seconds(settings.queue_visibility_timeout_seconds),
        )

        # DynamoDB: one item per (TradeId, Version)
        self.table = dynamodb.Table(
            self, "TradeRecordTable",
            table_name=f"{resource_prefix}-{settings.table_name}",
            partition_key=dynamodb.Attribute(name="TradeId", type=dynamodb.AttributeType.STRING),
            sort_key=dynamodb.Attribute(name="Version", type=dynamodb.AttributeType.NUMBER),
            billing_mode=dynamodb.BillingMode.PAY_PER_REQUEST,
            removal_policy=(RemovalPolicy.DESTROY if settings.destroy_table_on_delete
                            else RemovalPolicy.RETAIN),
        )

        # Cluster
        vpc = ec2.Vpc(self, "Vpc", max_azs=2, nat_gateways=1)
        cluster = ecs.Cluster(self, "FargateServiceAutoscaling", vpc=vpc)

        # Fargate service
        self.fargate_service = ecs_patterns.ApplicationLoadBalancedFargateService(
            self, "FargateService",
            cluster=cluster,
            memory_limit_mib=settings.memory_limit_mib,
            cpu=settings.cpu,
            task_image_options=ecs_patterns.ApplicationLoadBalancedTaskImageOptions(
                container_name=settings.container_name,
                image=image or self._default_image(settings),
                container_port=settings.container_port,
                environment={
                    "QUEUE_URL": self.queue.queue_url,
                    "TABLE_NAME": self.table.table_name,
                    "DEPLOYMENT_STAGE": resource_prefix,
                },
            ),
            public_load_balancer=True,
            desired_count=settings.desired_count,
            listener_port=settings.listener_port,
        )

        task_definition = self.fargate_service.task_definition
        task_definition.obtain_execution_role().add_managed_policy(
            iam.ManagedPolicy.from_aws_managed_policy_name("AmazonEC2ContainerRegistryPowerUser")
        )
        if self.image_repository_arn:
            self._grant_image_pull(task_definition.obtain_execution_role())
        self.table.grant_read_write_data(task_definition.task_role)
        self.queue.grant_send_messages(task_definition.task_role)
        self.queue.grant_consume_messages(task_definition.task_role)

        # Autoscaling on CPU, cooldowns damp oscillation
        scaling = self.fargate_service.service.auto_scale_task_count(
            min_capacity=settings.min_capacity,
            max_capacity=settings.max_capacity,
        )
        scaling.scale_on_cpu_utilization(
            "CpuScaling",
            target_utilization_percent=settings.cpu_target_utilization,
            scale_in_cooldown=Duration.seconds(settings.scale_in_cooldown_seconds),
            scale_out_cooldown=Duration.seconds(settings.scale_out_cooldown_seconds),
        )

        # Health check
        self.fargate_service.target_group.configure_health_check(path=settings.health_check_path)

        self.load_balancer_address = self.fargate_service.load_balancer.load_balancer_dns_name
        self.service = self.fargate_service.service

        self.url_output = CfnOutput(
            self, "loadBalancerUrl",
            value=self.load_balancer_address,
            export_name=f"{resource_prefix}-loadBalancerUrl",
        )
        CfnOutput(self, "healthCheckPath", value=settings.health_check_path)
        CfnOutput(self, "queueUrl", value=self.queue.queue_url)
        CfnOutput(self, "tableName", value=self.table.table_name)

        logger.debug(f"Declared application stack {construct_id} ({resource_prefix})")

    def _default_image(self, settings: Settings) -> ecs.ContainerImage:
        """Image pushed by the application build into the toolchain registry."""
        toolchain = settings.toolchain
        account = toolchain.account or Aws.ACCOUNT_ID
        self.image_repository_arn = (
            f"arn:{Aws.PARTITION}:ecr:{toolchain.region}:{account}"
            f":repository/{settings.ecr_repo_name}"
        )
        return ecs.ContainerImage.from_registry(
            f"{account}.dkr.ecr.{toolchain.region}.{Aws.URL_SUFFIX}"
            f"/{settings.ecr_repo_name}:{settings.image_tag}"
        )

    def _grant_image_pull(self, role: iam.IRole) -> None:
        role.add_to_principal_policy(iam.PolicyStatement(
            actions=["ecr:BatchCheckLayerAvailability", "ecr:GetDownloadUrlForLayer", "ecr:BatchGetImage"],
            resources=[self.image_repository_arn],
        ))
        role.add_to_principal_policy(iam.PolicyStatement(
            actions=["ecr:GetAuthorizationToken"],
            resources=["*"],
        ))
