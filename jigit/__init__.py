"""jigit - link GitLab issues with Jira tickets."""

__version__ = "0.1.0"
