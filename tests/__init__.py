"""
scanmc Test Suite
=================

Test Categories:
- Unit Tests: priors, posterior, proposals, chains, storage, mixtures,
  both samplers, configuration, CLI and logging helpers
- Integration Tests: statistical checks of complete scans

Requirements:
- pytest >= 7.4.0
- pytest-cov >= 4.1.0
- NumPy >= 1.25.0
"""
