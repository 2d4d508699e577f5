"""Kubernetes access and object helpers."""
