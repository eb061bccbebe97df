"""External service integrations: GitHub REST API and the resolver service."""

from pr_merge_resolver.integrations.github import GitHubClient
from pr_merge_resolver.integrations.resolver_oracle import ResolverOracleClient

__all__ = ["GitHubClient", "ResolverOracleClient"]
