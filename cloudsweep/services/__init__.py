"""Governance services: policy engine, scan and cleanup orchestration."""
