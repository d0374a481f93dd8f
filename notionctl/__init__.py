"""notionctl: command line client for the Notion API."""

__version__ = "0.1.0"
