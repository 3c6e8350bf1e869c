"""
Family event lifecycle feature package.

Keeps every layer of the discovery -> approval -> registration -> calendar
flow co-located: domain models, pipeline stages, approval channels, the
registration automator, persistence, scheduler jobs and the API router.
"""
