"""Adapters that connect the core ports to concrete storage and delivery."""
