"""Decoders for Linux RAS trace events: memory controller, MCE, CXL, extlog, disk, devlink and memory failure."""

__version__ = "0.1.0"