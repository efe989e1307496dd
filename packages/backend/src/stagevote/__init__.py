"""StageVote — live voting for college-society events.

Clients browse events, vote on performances, and watch the tally move
in real time over Server-Sent Events. The relational store is the system
of record; the broadcast hub keeps a cached tally and fans it out.
"""

__version__ = "0.1.0"
