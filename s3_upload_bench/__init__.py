"""
S3 Upload Throughput Benchmark

Drives many concurrent object uploads from independent worker processes
against one S3-compatible endpoint and reports average and peak throughput.
"""

__version__ = "0.1.0"
