"""archrig - idempotent, backup-preserving Arch workstation provisioning."""

__version__ = "0.3.0"
