"""Queue nftables chain commands and send them to the kernel over netlink."""

__version__ = "0.1.0"