"""
Integration Tests for scanmc
============================

End-to-end scans checked against known Gaussian and bimodal targets:
- MCMC prerun and main run statistics
- PMC adaptation and final sampling
- MCMC -> PMC hand-over through HDF5 files
"""
