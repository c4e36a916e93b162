"""Quiz domain services: store port, scoring, room lifecycle and timers.

This package contains the room session core that HTTP routes, socket
handlers and the background scheduler import. Nothing in here depends on
a concrete database; everything talks to the ``RoomStore`` port.
"""
