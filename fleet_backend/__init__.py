"""
Backend package for the machine fleet manager.

This package provides a FastAPI application that keeps a registry of
remotely controllable machines, proxies start/stop commands to each
machine's control URL and reconciles status with the upstream node feed.
"""
