"""
Durable job queue for notification delivery.

This package provides the at-least-once job system:
- SQL-backed broker with leases, heartbeats and delayed visibility
- Producer-side enqueue contract for route handlers
- Worker loop with retry/backoff and lifecycle observers
- Administrative listing and replay of permanently failed jobs
"""
