"""File content access and classification."""

from pr_merge_resolver.content.fetcher import ContentFetcher, classify, is_binary, is_json

__all__ = ["ContentFetcher", "classify", "is_binary", "is_json"]
