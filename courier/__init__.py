"""Courier — reliable notification delivery core.

Asynchronous delivery queue with bounded concurrency, retry with
exponential backoff and a durable dead-letter store, paired with a
calendar job scheduler that fires each daily notification batch at most
once per day.
"""
