"""
worldmap Test Suite

This package contains tests for the world map scanner and map server.

Structure:
- unit/: Unit tests for individual components
- integration/: HTTP API and scanner-to-server tests
- fakes.py: Shared test doubles (virtual scheduler, recording sender/executor, flat worlds)
"""
