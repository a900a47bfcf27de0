"""
Tests package - Test suite for the managed identity agent.

Contains:
- unit/: Unit tests for individual components, run against in-memory fakes
  of the hub and spoke APIs
"""
