"""
CDK constructs of the trade store.

- app_stack: queue, table and load balanced Fargate service for one environment
- app_stage: deployable unit wrapping the application stack per target
- build_stack: ECR, CodeBuild and the hand-wired release pipeline
- cdk_pipeline_stack: self-mutating pipeline promoting the stage through targets
- buildspecs: CodeBuild buildspecs (plain dicts, no CDK import)
"""
