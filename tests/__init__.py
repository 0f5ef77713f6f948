"""Test package for the N-Back trainer.

Core modules are tested with an injected fake clock and fixed seeds, so
every session runs deterministically without real time. The UI smoke tests
run headlessly using pygame's dummy video driver. To run these tests,
execute ``pytest`` from the project root.
"""
