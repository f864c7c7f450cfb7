"""agentbridge: Jira / GitHub conversational automation agent."""

__version__ = "0.1.0"
