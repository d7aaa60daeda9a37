"""
Adapters for external systems.

- devops_client: Azure DevOps work tracking REST API (work items, rule files, updates).
"""
