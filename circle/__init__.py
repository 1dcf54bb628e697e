"""The Circle: community chat, direct messages, and notifications backend."""
