"""CloudVote API service: connection pool, vote ledger, audit log and aggregation view."""
