"""
REST endpoint plugin: generic CRUD calls from a host gateway translated into
authenticated, retried HTTP requests against configured downstream services.
"""

__version__ = "0.1.0"
