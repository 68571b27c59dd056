"""Integration tests for the CloudVote API.

These tests drive the FastAPI application in process, lifespan included:

- Vote submission (JSON and form bodies, validation, store faults)
- Live data (tally, audit window, read failures)
- Liveness, dashboard and metrics endpoints
"""
