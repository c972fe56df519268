"""DynamoDB plumbing for the audit store.

This package centralizes:
- boto3 client/resource configuration
- retry/backoff policy for throttling
- typed errors the sync services can wrap with site/audit context
- a small table facade (get/put/query/batch)
"""
