"""
Slack Gateway Module

Signature verification, webhook routes and background processing of Slack
deliveries.
"""
