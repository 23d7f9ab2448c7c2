"""Core domain package for chatwarden.

Core contains normalization, trigger matching, rate limiting and the message
pipeline without any Telegram or storage-specific code, keeping the business
logic portable.
"""
