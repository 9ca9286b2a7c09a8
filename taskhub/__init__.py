"""TaskHub: one local, continuously refreshed view over Jira, Bitbucket and mail."""

__version__ = "0.1.0"
