"""Generate persistence-mapped entity types and Liquibase changelogs from wire models."""

__version__ = "0.3.0"
