"""Multi-strategy search agent and its catalog of named patterns."""

from .search_agent import AgentSearchResult, SearchAgent, SearchPattern

__all__ = ["SearchAgent", "SearchPattern", "AgentSearchResult"]
