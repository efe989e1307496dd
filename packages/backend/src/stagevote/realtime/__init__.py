"""Real-time infrastructure — the vote hub, SSE streams, Redis mirror.

Tallies flow through two paths:
1. VoteHub → per-subscriber buffered channel → SSE response (this process)
2. VoteHub → Redis PUBLISH (other processes, e.g. a push-notification worker)

The first path is authoritative for connected clients; the second is best effort.
"""
