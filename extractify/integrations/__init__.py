"""Delivery of completed extraction results to external destinations."""
