"""
Worker module.
Contains the dispatcher, the worker pool, and task handlers.
"""
