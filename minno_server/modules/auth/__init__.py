"""
Auth Module

OAuth installation flows for Slack and Notion.
"""
