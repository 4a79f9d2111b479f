"""TFTP error simulator

A relay that sits between a TFTP client and server and, on operator command,
drops, delays or duplicates chosen packets so both endpoints can be tested
against an unreliable network without modifying either of them.

- packet framing is kept apart from the relay plumbing
- every send is scheduled, never done on a receive thread
- faults are matched by packet meaning, not raw bytes
"""

__all__ = []
