"""
Work Item Automation service package.

Propagates work item updates across a parent/child hierarchy according to
rules written in a small DSL. It provides:

- app.main: Webhook receiver, rule validation and dry-run endpoints, health.
- app.rules: DSL parser and first-match rule engine.
- app.dispatch: Per-item batching of update operations.
- app.adapters: Work tracking REST API client.
- app.webhook: Service hook payload model.

Guidelines:
- The service is stateless; rules are fetched per event.
- Rule evaluation is pure; all I/O happens in the adapters and dispatcher.
"""
