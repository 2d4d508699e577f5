"""Durable object storage for materialized API specs."""
