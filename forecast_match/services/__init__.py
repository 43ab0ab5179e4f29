"""Matching services: scoring, review queue, lifecycle and history."""
