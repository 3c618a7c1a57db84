"""
Live streaming domain logic.

- signaling: codec and channel over the document store.
- stream: peer session, lifecycle controller and live stream directory.
"""
