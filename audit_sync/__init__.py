"""
Turns audit findings into durable opportunities and suggestions.

Entry points:
- `modules.opportunities.opportunity_service.upsert_opportunity`
- `modules.suggestions.sync_service.sync_suggestions`
"""
