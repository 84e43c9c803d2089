"""Core domain package for threatscope.

Core contains identity, classification, filtering, backfill and delivery
logic without any feed-parsing, transport or file-format code, keeping the
business logic portable.
"""
