from .graph_client import GraphApiClient, parse_rate_limit_headers

__all__ = ["GraphApiClient", "parse_rate_limit_headers"]
