"""ImpactGate - change impact analysis and implementation gating."""

__version__ = "0.1.0"
