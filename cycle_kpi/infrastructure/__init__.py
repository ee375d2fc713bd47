"""
Infrastructure
==============

Technical adapters shared by the bounded contexts:
- database: async SQLAlchemy engine and sessions
- tracker: GraphQL client for the upstream work tracker
"""
