"""Extractify extraction worker package."""
