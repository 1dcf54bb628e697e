"""Conversation/circle data access shared by the REST API and the relay.

Functions take an AsyncSession, raise circle.common.exceptions on
missing rows or permission failures, and return ORM rows or schemas.
Callers own the transaction: functions flush, callers commit.
"""
