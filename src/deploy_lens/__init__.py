"""Build classification and deployment correlation for CodeBuild/CodePipeline."""

__version__ = "0.3.0"
