"""WebSocket message relay for circle chat and direct messages.

Clients connect to /ws with a session token. The relay tracks which
sockets belong to which user and which circles each socket listens to,
then fans frames out by circle membership or DM participants.

Architecture:
    client frame -> router -> handlers (persist / resolve participants)
    -> publish_envelope() -> [Redis "circle:relay" -> redis_subscriber()]
    -> ConnectionManager.deliver() -> subscribed sockets
"""
