"""ridgesync: GitOps repository sync agent for Pine Ridge hosts."""

__version__ = "1.0.0"
