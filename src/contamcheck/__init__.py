"""contamcheck: read-level contamination check of an assembly against a known contaminant.

Public API is intentionally small; most users should use the CLI:

    contamcheck check reads.bam --consensus assembly.fa --reference contaminant.fa

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
