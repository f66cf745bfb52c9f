"""
Data models module for the Fielsdown content platform.

This module contains SQLAlchemy ORM models for:
- Identities and sessions
- Boards, Posts, Comments
- Schema version metadata
"""
