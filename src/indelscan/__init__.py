"""indelscan: recurrent insertion/deletion screening from SAM/BAM alignments.

Public API is intentionally small; most users should use the CLI:

    indelscan alignments.bam --outdir results/

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
