"""Supervisor core library."""
