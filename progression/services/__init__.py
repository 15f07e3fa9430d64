"""Collaborator-facing services, notification channels, and dependency wiring"""
