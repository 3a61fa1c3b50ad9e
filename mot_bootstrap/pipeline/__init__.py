"""Resumable provisioning pipeline.

This package provides:
- Bootstrap configuration (TOML)
- A step ledger recording what previous runs did
- The ordered, fail-fast step orchestrator and the MOT20 setup steps

Every step is guarded by a filesystem probe, so after an interruption the
same command simply continues from the first step that is not done.
"""
