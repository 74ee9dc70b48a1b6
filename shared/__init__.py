"""Shared package for the Site Survey workflow.

Contains code used by the backend services, the HTTP layer and the CLI:

- Database models (models.py) - SQLAlchemy models for roles, assignments, surveys,
  the status ledger and notifications
- Enums (enums.py) - survey statuses, access levels, permission actions
- Status edges (transitions.py) - the workflow edge table and grant keys
- Validation utilities (validation.py, schemas.py) - input validation and sanitization
"""
