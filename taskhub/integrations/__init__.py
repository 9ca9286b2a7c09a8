"""Integration modules"""
from .bitbucket_client import BitbucketClient
from .jira_client import JiraClient
from .mail_client import IMAPClient, SMTPSender

__all__ = ["BitbucketClient", "JiraClient", "IMAPClient", "SMTPSender"]
