"""Core types and errors shared across the controller."""
