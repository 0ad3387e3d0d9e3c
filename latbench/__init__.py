"""Latency benchmark for request/reply over a messaging fabric.

Modules include configuration, the weighted delay sampler, responders and
their replica-group topology, the latency histogram, the closed-loop driver,
the RabbitMQ transport, metrics, tracing and console reporting.
"""
