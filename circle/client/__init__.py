"""Python client SDK for The Circle: relay socket, REST API, notification poller."""
