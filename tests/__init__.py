"""Test suite for the Quoteflow quote lifecycle engine.

This package contains tests for:
- Transition table and status metadata
- Completeness projection and transition validator
- Authorization gate and state machine orchestrator
- Expiration decisions and the expiration sweeper
- In-memory store, events, settings and quote payloads
- Integration scenarios through QuoteLifecycleService (happy path,
  approvals, conflicts, persistence failures)
"""
