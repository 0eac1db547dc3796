"""
Job Queue

An asynchronous task queue: an HTTP API and enqueue client on the producer
side, and a worker that dispatches across weighted queues with bounded
concurrency, retries with exponential backoff, and drains in-flight tasks
on shutdown.
"""

__version__ = "1.0.0"
